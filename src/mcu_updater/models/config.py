"""Upgrade configuration model."""

from pydantic import BaseModel, ConfigDict, Field


class UpgradeConfiguration(BaseModel):
    """Tunable parameters for an upgrade run.

    Example:
        {
            "estimated_swap_time": 10.0,
            "chunk_size": 512,
            "erase_app_settings": false
        }
    """

    model_config = ConfigDict(frozen=True)

    estimated_swap_time: float = Field(
        10.0,
        ge=0,
        description=(
            "Seconds the device needs to swap images and reboot. "
            "Hardware dependent; an nRF52840 needs about 10 seconds."
        ),
    )
    reset_margin: float = Field(
        5.0, ge=0, description="Extra seconds to wait for reconnect after the swap time"
    )
    response_timeout: float = Field(
        30.0, gt=0, description="Seconds to wait for each device response"
    )
    chunk_size: int = Field(
        512, gt=0, description="Upload chunk size in bytes", examples=[128, 512, 2048]
    )
    erase_app_settings: bool = Field(
        False, description="Erase application settings on the device before reset"
    )

    @property
    def reset_timeout(self) -> float:
        """Total time to wait for the device after a reset command."""
        return self.estimated_swap_time + self.reset_margin
