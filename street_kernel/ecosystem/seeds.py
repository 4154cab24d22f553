"""Canonical district layout installed at world-seed time."""

from typing import List

from street_kernel.models.district import DistrictState, DistrictStatus

# district_id: (crime, police, property, business, activity, status)
_SEED_TABLE = {
    "downtown": (60, 70, 55, 85, 75, DistrictStatus.STABLE),
    "yorkville": (30, 75, 85, 90, 70, DistrictStatus.GENTRIFYING),
    "regent_park": (70, 55, 35, 40, 55, DistrictStatus.VOLATILE),
    "scarborough": (55, 40, 35, 45, 50, DistrictStatus.STABLE),
    "etobicoke": (50, 45, 45, 50, 45, DistrictStatus.STABLE),
    "north_york": (45, 50, 50, 55, 55, DistrictStatus.STABLE),
    "queen_west": (55, 55, 55, 65, 75, DistrictStatus.STABLE),
    "kensington": (60, 45, 45, 55, 70, DistrictStatus.VOLATILE),
    "port_lands": (70, 35, 40, 40, 30, DistrictStatus.DECLINING),
    "junction": (50, 50, 50, 60, 55, DistrictStatus.STABLE),
    "parkdale": (65, 45, 40, 45, 60, DistrictStatus.VOLATILE),
    "little_italy": (45, 50, 55, 65, 65, DistrictStatus.STABLE),
    "liberty_village": (45, 50, 70, 70, 60, DistrictStatus.GENTRIFYING),
    "rosedale": (20, 80, 95, 85, 40, DistrictStatus.GENTRIFYING),
    "bridle_path": (15, 85, 100, 90, 30, DistrictStatus.STABLE),
}


def seed_districts() -> List[DistrictState]:
    districts = []
    for district_id, (crime, police, prop, business, activity, status) in _SEED_TABLE.items():
        districts.append(DistrictState(
            district_id=district_id,
            name=district_id.replace("_", " ").title(),
            crime_index=crime,
            police_presence=police,
            property_values=prop,
            business_health=business,
            street_activity=activity,
            status=status,
        ))
    return districts
