"""Faction roster and district adjacency used for reputation spillover."""

from typing import Dict, List

from street_kernel.models.reputation import Faction

FACTIONS: Dict[str, Faction] = {
    f.id: f
    for f in [
        Faction(
            id="dixon_bloods", name="Dixon City Bloods",
            home_district="etobicoke", enemies=["galloway_boys"],
        ),
        Faction(
            id="galloway_boys", name="Galloway Boys",
            home_district="scarborough", enemies=["dixon_bloods"],
        ),
        Faction(id="regent_park_og", name="Regent Park OGs", home_district="regent_park"),
        Faction(
            id="queen_street_kings", name="Queen Street Kings",
            home_district="downtown", allies=["yorkville_elite"],
        ),
        Faction(
            id="yorkville_elite", name="Yorkville Elite",
            home_district="yorkville", allies=["queen_street_kings"],
        ),
        Faction(id="junction_crew", name="Junction Crew", home_district="junction"),
        Faction(id="port_lands_union", name="Port Lands Union", home_district="port_lands"),
        Faction(
            id="little_italy_family", name="Little Italy Family",
            home_district="little_italy",
        ),
    ]
}

DISTRICT_ADJACENCY: Dict[str, List[str]] = {
    "downtown": ["yorkville", "kensington", "queen_west", "financial", "chinatown"],
    "yorkville": ["downtown", "north_york", "rosedale"],
    "scarborough": ["north_york", "regent_park"],
    "etobicoke": ["junction", "north_york"],
    "north_york": ["yorkville", "scarborough", "etobicoke"],
    "kensington": ["downtown", "chinatown", "queen_west", "little_italy"],
    "port_lands": ["downtown", "regent_park"],
    "junction": ["etobicoke", "parkdale", "queen_west"],
    "parkdale": ["junction", "queen_west", "liberty_village"],
    "little_italy": ["kensington", "queen_west"],
    "queen_west": ["downtown", "kensington", "parkdale", "little_italy", "junction"],
    "regent_park": ["downtown", "scarborough", "port_lands"],
    "financial": ["downtown", "yorkville"],
    "chinatown": ["downtown", "kensington"],
    "liberty_village": ["parkdale", "queen_west"],
    "rosedale": ["yorkville", "north_york"],
    "bridle_path": ["north_york", "rosedale"],
}


def factions_in_district(district_id: str) -> List[Faction]:
    """Factions based in, or allied with, a district, by name."""
    found = [
        f for f in FACTIONS.values()
        if f.home_district == district_id or district_id in f.allied_districts
    ]
    return sorted(found, key=lambda f: f.name)
