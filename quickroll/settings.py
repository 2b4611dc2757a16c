"""Behaviour toggles for the roll pipeline."""

from typing import Literal

from pydantic_settings import BaseSettings


class RollSettings(BaseSettings):
    model_config = {"env_prefix": "QUICKROLL_"}

    always_roll_multiroll: bool = False
    confirm_retro_adv: bool = False
    confirm_retro_crit: bool = False
    quick_vanilla_enabled: bool = False
    damage_buttons_enabled: bool = True
    manual_damage_mode: int = 0  # 0 = never, 1 = when no attack, 2 = always
    hide_final_result_enabled: bool = False
    attack_roll_visibility: Literal["all", "hideAC", "none"] = "all"
    overlay_buttons_enabled: bool = True
    animation_timeout_seconds: float = 10.0  # 0 disables the bound
    merge_retry_attempts: int = 3


settings = RollSettings()
