from fastapi import Header

from clinic_engine.core.exceptions import ValidationError


def get_clinic_id(
    x_clinic_id: str = Header(
        ...,
        alias="X-Clinic-ID",
        description="Clinic already resolved by the identity layer"
    )
) -> str:
    clinic_id = x_clinic_id.strip()
    if not clinic_id:
        raise ValidationError(message="X-Clinic-ID header is required", details={"header": "X-Clinic-ID"})
    return clinic_id
