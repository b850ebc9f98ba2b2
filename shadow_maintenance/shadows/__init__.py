"""
Shadow Index Schema Module

Declares which resource fields get shadow index records and how their
values are encoded.

Main components:
- schema: Validated shadow config value objects
- fingerprint: Content hash of the shadow config
- generator: Shadow record generation
- registry: Resource definitions and shadow config generation

Usage:
    from shadow_maintenance.shadows import ShadowConfig, fingerprint, generate_shadow_records

    config = ShadowConfig.from_base64(os.environ["SHADOW_CONFIG"])
    schema = config.get_resource("articles")
    shadows = generate_shadow_records("a1", record["data"], schema)
"""

from shadow_maintenance.shadows.schema import (
    FieldType,
    ResourceSchema,
    ShadowConfig,
    ShadowConfigError,
)
from shadow_maintenance.shadows.fingerprint import ConfigFingerprint, fingerprint
from shadow_maintenance.shadows.generator import (
    ShadowGenerationError,
    generate_shadow_keys,
    generate_shadow_records,
)

__all__ = [
    "FieldType",
    "ResourceSchema",
    "ShadowConfig",
    "ShadowConfigError",
    "ConfigFingerprint",
    "fingerprint",
    "ShadowGenerationError",
    "generate_shadow_keys",
    "generate_shadow_records",
]
