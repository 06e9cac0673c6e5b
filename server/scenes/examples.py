"""Example scene scripts served by /api/examples."""

from typing import Optional

EXAMPLES = [
    {
        "name": "sphere",
        "description": "Unit sphere",
        "bounds": (-1.5, 1.5),
        "resolution": 31,
        "script": "result = sphere(1.0)\n",
    },
    {
        "name": "tube",
        "description": "Hollow tube with a smooth-blended collar",
        "bounds": (-1.7, 1.7),
        "resolution": 38,
        "script": (
            "-- wall between r=0.45 and r=0.8\n"
            "wall = tube(0.8, 0.45, 1.0)\n"
            "collar = tube(1.05, 0.45, 0.12):at(0, 0, 0.9)\n"
            "result = smooth_union(wall, collar, 0.08)\n"
        ),
    },
    {
        "name": "deep_well",
        "description": "Deep imaging well with a top lip",
        "bounds": (-2.8, 2.8),
        "resolution": 44,
        "script": (
            "outer = cylinder(0.95, 1.75):at(0,0,0.0)\n"
            "bore_main = cylinder(0.52, 1.72):at(0,0,0.02)\n"
            "bore_bottom = cylinder(0.35, 0.34):at(0,0,-0.62)\n"
            "top_lip = subtract(cylinder(1.08, 0.12):at(0,0,1.78), cylinder(0.52, 0.14):at(0,0,1.78))\n"
            "\n"
            "body = subtract(subtract(outer, bore_main), bore_bottom)\n"
            "result = union(body, top_lip)\n"
        ),
    },
    {
        "name": "halbach_ring",
        "description": "Halbach magnet ring synthesized from coverslip and magnet constraints",
        "bounds": (-55.0, 55.0),
        "resolution": 41,
        "script": (
            'base = synthesize("ring",\n'
            '  require("coverslip", 20),\n'
            '  require("center_hole", 25),\n'
            '  require("inner_count", 8),\n'
            '  require("outer_count", 12),\n'
            '  require("magnet_size", 12.8),\n'
            '  require("min_gap", 0.35),\n'
            '  require("ring_height", 13.0)\n'
            ")\n"
            "\n"
            "v1 = void_cylinder(0.0, 0.0, 0.0, 0.24, 1.6)\n"
            "v2 = void_cylinder(0.0, 0.0, 0.8, 0.16, 0.22)\n"
            "\n"
            "result = apply_voids(base, v1, v2)\n"
        ),
    },
    {
        "name": "pocket_ring",
        "description": "Ring with eight polar-repeated magnet pockets",
        "bounds": (-40.0, 40.0),
        "resolution": 41,
        "script": (
            "body = subtract(cylinder(31, 15), cylinder(12.5, 16))\n"
            "pocket = box(12.8, 12.8, 32)\n"
            "result = subtract(body, repeat_polar(pocket, 8, 22))\n"
        ),
    },
    {
        "name": "bore_stack",
        "description": "Relationship-style bore stack (parses, no solver yet)",
        "bounds": (-30.0, 30.0),
        "resolution": 38,
        "script": (
            'lower = bore("lower", 24.5)\n'
            'middle = bore("middle", 24.5)\n'
            'upper = bore("upper", 50)\n'
            "\n"
            'r1 = relate("min_distance", middle, lower, 30)\n'
            'r2 = relate("distance", upper, middle, 40)\n'
            'r3 = relate("outer_max", lower, 24.5)\n'
            "\n"
            'result = synthesize("bore_stack",\n'
            "  lower, middle, upper,\n"
            "  r1, r2, r3,\n"
            '  require("wall_min", 1.5),\n'
            '  objective("maximize_internal_volume", 1.0),\n'
            '  objective("minimize_height", 0.35)\n'
            ")\n"
        ),
    },
]


def get_example(name: str) -> Optional[dict]:
    for ex in EXAMPLES:
        if ex["name"] == name:
            return ex
    return None
