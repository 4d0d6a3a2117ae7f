from typing import Optional

from braidr.schemas.location import LocationCoordinates, PermissionStatus

class PositionUnavailableError(Exception):
    pass

class PositionSource:
    """Where the current device position comes from."""

    async def check_permission(self) -> PermissionStatus:
        raise NotImplementedError

    async def request_permission(self) -> PermissionStatus:
        raise NotImplementedError

    async def get_current_position(self) -> LocationCoordinates:
        raise NotImplementedError

class StaticPositionSource(PositionSource):
    """
    Fixed, configured position for hosts without a location sensor.
    With no coordinates configured, permission is reported as denied.
    """

    def __init__(self, latitude: Optional[float] = None, longitude: Optional[float] = None):
        self.latitude = latitude
        self.longitude = longitude

    @property
    def configured(self) -> bool:
        return self.latitude is not None and self.longitude is not None

    async def check_permission(self) -> PermissionStatus:
        if self.configured:
            return PermissionStatus(granted=True, canAskAgain=True, status="granted")
        return PermissionStatus(granted=False, canAskAgain=False, status="denied")

    async def request_permission(self) -> PermissionStatus:
        return await self.check_permission()

    async def get_current_position(self) -> LocationCoordinates:
        if not self.configured:
            raise PositionUnavailableError("No device position configured")
        return LocationCoordinates(latitude=self.latitude, longitude=self.longitude)
