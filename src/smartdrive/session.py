"""Operator session issued by the backend at login."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field


class OperatorSession(BaseModel):
    """Immutable identity of the logged-in operator.

    Login itself happens outside this package; the client only needs the
    issued session id (for persistence calls) and the driver/vehicle ids
    (for ``start_trip`` and incident reports).

    Parameters
    ----------
    session_id : str
        Session token returned by the backend ``user_login`` operation.
    driver_id : int
        Backend driver id of the operator.
    vehicle_id : int
        Vehicle currently selected by the operator.
    """

    model_config = ConfigDict(
        frozen=True,
        extra="forbid",
        str_strip_whitespace=True,
    )

    session_id: str = Field(min_length=1)
    driver_id: int = Field(gt=0)
    vehicle_id: int = Field(default=1, gt=0)
