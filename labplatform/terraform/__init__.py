from .executor import ModuleFetchAuth, StageResult, TerraformExecutor
from .generator import (
    ConfigGenerator,
    CredentialMaterial,
    GeneratedConfig,
    NetworkAssignment,
    RenderInput,
)

__all__ = [
    "ModuleFetchAuth",
    "StageResult",
    "TerraformExecutor",
    "ConfigGenerator",
    "CredentialMaterial",
    "GeneratedConfig",
    "NetworkAssignment",
    "RenderInput",
]
