from . import (
	geolocate,
	health,
	pnodes,
)


__all__ = [
	"geolocate",
	"health",
	"pnodes",
]
