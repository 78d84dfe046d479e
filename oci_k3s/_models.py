"""Data models shared by the probes, convergence actions, and pipeline.

These models keep the data flow between stages explicit: probes return a
fresh :class:`ObservedState`, configuration supplies a :class:`DesiredState`,
and neither is mutated after construction.

Examples
--------
>>> ShapeConfig.from_oci({"ocpus": 4.0, "memory-in-gbs": 24.0})
ShapeConfig(ocpus=4.0, memory_gbs=24.0)
"""

from __future__ import annotations

import enum
from collections.abc import Mapping
from dataclasses import dataclass

DEFAULT_INSTANCE_NAME = "k3s-host"


class LifecyclePhase(enum.Enum):
    """Normalised lifecycle phase of a compute instance."""

    ABSENT = "ABSENT"
    PROVISIONING = "PROVISIONING"
    STOPPED = "STOPPED"
    RUNNING = "RUNNING"
    DEGRADED = "DEGRADED"


_OCI_PHASES: dict[str, LifecyclePhase] = {
    "RUNNING": LifecyclePhase.RUNNING,
    "STOPPED": LifecyclePhase.STOPPED,
    "PROVISIONING": LifecyclePhase.PROVISIONING,
    "STARTING": LifecyclePhase.PROVISIONING,
    "STOPPING": LifecyclePhase.PROVISIONING,
    "TERMINATING": LifecyclePhase.ABSENT,
    "TERMINATED": LifecyclePhase.ABSENT,
}


def phase_from_oci(lifecycle_state: str | None) -> LifecyclePhase:
    """Map an OCI ``lifecycle-state`` value onto :class:`LifecyclePhase`.

    Examples
    --------
    >>> phase_from_oci("STARTING")
    <LifecyclePhase.PROVISIONING: 'PROVISIONING'>
    >>> phase_from_oci("CREATING_IMAGE")
    <LifecyclePhase.DEGRADED: 'DEGRADED'>
    """

    if not lifecycle_state:
        return LifecyclePhase.DEGRADED
    return _OCI_PHASES.get(lifecycle_state.upper(), LifecyclePhase.DEGRADED)


@dataclass(frozen=True, slots=True)
class ShapeConfig:
    """Compute units and memory of a flexible shape.

    Attributes
    ----------
    ocpus
        Number of OCPUs.
    memory_gbs
        Memory size in gigabytes.
    """

    ocpus: float
    memory_gbs: float

    @classmethod
    def from_oci(cls, payload: Mapping[str, object] | None) -> ShapeConfig | None:
        """Build a shape from OCI's ``shape-config`` object.

        Examples
        --------
        >>> ShapeConfig.from_oci({}) is None
        True
        """

        if not payload:
            return None
        ocpus = payload.get("ocpus")
        memory = payload.get("memory-in-gbs")
        if ocpus is None or memory is None:
            return None
        return cls(ocpus=float(ocpus), memory_gbs=float(memory))  # type: ignore[arg-type]

    def describe(self) -> str:
        """Return a short human-readable description.

        Examples
        --------
        >>> ShapeConfig(4, 24).describe()
        '4 OCPU, 24 GB RAM'
        """

        return f"{format_number(self.ocpus)} OCPU, {format_number(self.memory_gbs)} GB RAM"


def format_number(value: float) -> str:
    """Render shape numbers without a trailing ``.0``.

    Examples
    --------
    >>> format_number(24.0), format_number(1.5)
    ('24', '1.5')
    """

    return str(int(value)) if float(value).is_integer() else str(value)


@dataclass(frozen=True, slots=True)
class ResourceDescriptor:
    """Stable identity of the managed compute instance."""

    compartment_id: str
    display_name: str = DEFAULT_INSTANCE_NAME


@dataclass(frozen=True, slots=True)
class ObservedState:
    """Snapshot returned by a state probe.

    Examples
    --------
    >>> ObservedState.absent().phase
    <LifecyclePhase.ABSENT: 'ABSENT'>
    """

    phase: LifecyclePhase
    instance_id: str | None = None
    lifecycle_state: str | None = None
    shape: ShapeConfig | None = None

    @classmethod
    def absent(cls) -> ObservedState:
        return cls(phase=LifecyclePhase.ABSENT)

    @classmethod
    def from_oci(cls, payload: Mapping[str, object]) -> ObservedState:
        """Build an observation from an OCI instance document."""

        lifecycle_state = payload.get("lifecycle-state")
        state = str(lifecycle_state) if lifecycle_state is not None else None
        instance_id = payload.get("id")
        shape_payload = payload.get("shape-config")
        return cls(
            phase=phase_from_oci(state),
            instance_id=str(instance_id) if instance_id else None,
            lifecycle_state=state,
            shape=ShapeConfig.from_oci(
                shape_payload if isinstance(shape_payload, Mapping) else None
            ),
        )

    @property
    def exists(self) -> bool:
        return self.phase is not LifecyclePhase.ABSENT


@dataclass(frozen=True, slots=True)
class DesiredState:
    """Target attributes supplied by configuration.

    Examples
    --------
    >>> desired = DesiredState(shape=ShapeConfig(4, 24))
    >>> desired.matches(ObservedState(LifecyclePhase.RUNNING, "id", "RUNNING", ShapeConfig(4, 24)))
    True
    >>> desired.matches(ObservedState(LifecyclePhase.STOPPED, "id", "STOPPED", ShapeConfig(4, 24)))
    False
    """

    phase: LifecyclePhase = LifecyclePhase.RUNNING
    shape: ShapeConfig | None = None

    def matches(self, observed: ObservedState) -> bool:
        if observed.phase is not self.phase:
            return False
        return self.shape is None or observed.shape == self.shape


__all__ = [
    "DEFAULT_INSTANCE_NAME",
    "DesiredState",
    "LifecyclePhase",
    "ObservedState",
    "ResourceDescriptor",
    "ShapeConfig",
    "format_number",
    "phase_from_oci",
]
