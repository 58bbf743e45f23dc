from .care_tools import (
    CHAT_STRATEGY,
    CareToolset,
    build_chat_registry,
    build_chat_strategy,
    build_chat_system_prompt,
)
from .onboarding_tools import (
    ONBOARDING_STRATEGY,
    OnboardingCollectedData,
    OnboardingToolset,
    build_onboarding_registry,
    build_onboarding_strategy,
)

__all__ = [
    "CHAT_STRATEGY",
    "ONBOARDING_STRATEGY",
    "CareToolset",
    "OnboardingCollectedData",
    "OnboardingToolset",
    "build_chat_registry",
    "build_chat_strategy",
    "build_chat_system_prompt",
    "build_onboarding_registry",
    "build_onboarding_strategy",
]
