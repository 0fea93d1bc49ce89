from .base import AIProfile, ModelReply, ProfileSelection, PromptContext
from .default_helpdesk import DefaultHelpdeskProfile
from .legal_intake import LegalIntakeProfile, normalize_intake_payload
from .router import AIProfileRouter, default_profiles

__all__ = [
    "AIProfile",
    "AIProfileRouter",
    "DefaultHelpdeskProfile",
    "LegalIntakeProfile",
    "ModelReply",
    "ProfileSelection",
    "PromptContext",
    "default_profiles",
    "normalize_intake_payload",
]
