"""
Container security posture.

Pure functions only: configuration in, SecurityProfile / docker flags out.
"""

from typing import List, Mapping, Optional

from claude_hub.core.config import Settings
from claude_hub.core.models import ResourceLimits, SecurityProfile

# The agent manages its own firewall inside the container
REQUIRED_CAPABILITIES = frozenset({"NET_ADMIN", "SYS_ADMIN"})
OPTIONAL_CAPABILITIES = ("NET_RAW", "SYS_TIME", "DAC_OVERRIDE", "AUDIT_WRITE")


def build_security_profile(
    privileged: bool = False,
    optional_capabilities: Optional[Mapping[str, bool]] = None,
    resource_limits: Optional[ResourceLimits] = None,
) -> SecurityProfile:
    """
    Derive the launch posture.

    ``privileged`` discards capability reasoning entirely; optional toggles
    are ignored in that mode. Unknown capability names are rejected.
    """
    limits = resource_limits or ResourceLimits()
    if privileged:
        return SecurityProfile(privileged=True, capabilities=frozenset(), resource_limits=limits)

    toggles = optional_capabilities or {}
    unknown = set(toggles) - set(OPTIONAL_CAPABILITIES)
    if unknown:
        raise ValueError(f"Unknown optional capabilities: {sorted(unknown)}")

    enabled = {cap for cap, on in toggles.items() if on}
    return SecurityProfile(
        privileged=False,
        capabilities=frozenset(REQUIRED_CAPABILITIES | enabled),
        resource_limits=limits,
    )


def security_profile_from_settings(settings: Settings) -> SecurityProfile:
    return build_security_profile(
        privileged=settings.CLAUDE_CONTAINER_PRIVILEGED,
        optional_capabilities={
            "NET_RAW": settings.CLAUDE_CONTAINER_CAP_NET_RAW,
            "SYS_TIME": settings.CLAUDE_CONTAINER_CAP_SYS_TIME,
            "DAC_OVERRIDE": settings.CLAUDE_CONTAINER_CAP_DAC_OVERRIDE,
            "AUDIT_WRITE": settings.CLAUDE_CONTAINER_CAP_AUDIT_WRITE,
        },
        resource_limits=ResourceLimits(
            memory=settings.CLAUDE_CONTAINER_MEMORY_LIMIT,
            cpu_shares=settings.CLAUDE_CONTAINER_CPU_SHARES,
            pids_limit=settings.CLAUDE_CONTAINER_PIDS_LIMIT,
        ),
    )


def security_flags(profile: SecurityProfile) -> List[str]:
    """docker run flags for a profile, capabilities in a stable order."""
    if profile.privileged:
        flags = ["--privileged"]
    else:
        ordered = sorted(REQUIRED_CAPABILITIES) + [
            cap for cap in OPTIONAL_CAPABILITIES if cap in profile.capabilities
        ]
        flags = [f"--cap-add={cap}" for cap in ordered]

    limits = profile.resource_limits
    flags += [
        "--memory", limits.memory,
        "--cpu-shares", str(limits.cpu_shares),
        "--pids-limit", str(limits.pids_limit),
    ]
    return flags
