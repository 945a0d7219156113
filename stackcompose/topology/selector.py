"""
Conditional resource selector.

Some resources come in mutually exclusive shapes chosen by which optional
fields are configured: a provisioned or a serverless database writer, an
HTTPS or an HTTP listener, target-tracking or step read scaling. Each slot
has a fixed precedence; the first rule whose fields are present wins and
the slot's default applies when none is. Conflicting fields never raise,
the losing fields are reported on the variant and logged.

Precedence per slot (first present wins):

    DatabaseCapacitySlot  instance_type > serverless_min/max_capacity > serverless 0.5-1 ACU
    ListenerSlot          certificate_arn (HTTPS/443) > HTTP/80
    ReadScalingSlot       target_tracking > step_scaling > fixed
    VpcLayoutSlot         props > cidr > 10.1.0.0/16
    ServiceScalingSlot    min/max_capacity (auto-scaled) > desired_count > fixed 2 tasks
"""

from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from enum import StrEnum
from types import MappingProxyType
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, model_validator

from stackcompose.core.logging import get_logger

logger = get_logger(__name__)

DEFAULT_SERVERLESS_MIN_CAPACITY = 0.5
DEFAULT_SERVERLESS_MAX_CAPACITY = 1.0
DEFAULT_VPC_CIDR = "10.1.0.0/16"
DEFAULT_MAX_AZS = 2
DEFAULT_DESIRED_COUNT = 2


class VariantKind(StrEnum):
    PROVISIONED = "provisioned"
    SERVERLESS = "serverless"
    HTTPS = "https"
    HTTP = "http"
    TARGET_TRACKING = "target_tracking"
    STEP_SCALING = "step_scaling"
    FIXED = "fixed"
    AUTO_SCALED = "auto_scaled"
    CUSTOM = "custom"
    CIDR = "cidr"


@dataclass(frozen=True)
class ResourceVariant:
    """The one shape selected for an optional-resource slot."""

    slot: str
    kind: VariantKind
    params: Mapping[str, Any] = field(default_factory=lambda: MappingProxyType({}))
    is_default: bool = False
    # Fields that were configured but lost on precedence
    overridden: tuple[str, ...] = ()


class SlotConfig(BaseModel):
    """Base class of optional-field slot configurations."""

    model_config = ConfigDict(frozen=True, extra="forbid")


# =================================================================
# Slot configurations
# =================================================================


class DatabaseCapacitySlot(SlotConfig):
    """Database writer/reader capacity: provisioned instance or serverless range."""

    instance_type: str | None = Field(default=None, description="e.g. 'r6g.large'")
    serverless_min_capacity: float | None = Field(default=None, ge=0)
    serverless_max_capacity: float | None = Field(default=None, gt=0)

    @model_validator(mode="after")
    def _check_range(self) -> "DatabaseCapacitySlot":
        low, high = self.serverless_min_capacity, self.serverless_max_capacity
        if low is not None and high is not None and low > high:
            raise ValueError("serverless_min_capacity must not exceed serverless_max_capacity")
        return self


class ListenerSlot(SlotConfig):
    """Load balancer listener: HTTPS when a certificate is configured."""

    certificate_arn: str | None = None


class TargetTracking(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    target_value: float = Field(gt=0)
    predefined_metric: str = "RDSReaderAverageCPUUtilization"
    scale_out_cooldown_seconds: int = 10
    scale_in_cooldown_seconds: int = 180


class ScalingStep(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    lower: float | None = None
    upper: float | None = None
    change: int


class StepScaling(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    metric_name: str = "CPUUtilization"
    steps: tuple[ScalingStep, ...] = Field(min_length=1)


class ReadScalingSlot(SlotConfig):
    """Read replica scaling of a database cluster."""

    min_capacity: int = Field(default=1, ge=0)
    max_capacity: int = Field(default=15, ge=1)
    target_tracking: TargetTracking | None = None
    step_scaling: StepScaling | None = None

    @model_validator(mode="after")
    def _check_range(self) -> "ReadScalingSlot":
        if self.min_capacity > self.max_capacity:
            raise ValueError("min_capacity must not exceed max_capacity")
        return self


class SubnetLayout(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    name: str
    subnet_type: str = Field(pattern="^(public|private|isolated)$")
    cidr_mask: int = Field(default=24, ge=16, le=28)


DEFAULT_SUBNETS = (
    SubnetLayout(name="public", subnet_type="public"),
    SubnetLayout(name="private", subnet_type="private"),
    SubnetLayout(name="isolated", subnet_type="isolated"),
)


class VpcProps(BaseModel):
    """Fully specified VPC layout."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    cidr: str
    max_azs: int = Field(default=DEFAULT_MAX_AZS, ge=1)
    nat_gateways: int | None = Field(default=None, ge=0)
    subnets: tuple[SubnetLayout, ...] = DEFAULT_SUBNETS


class VpcLayoutSlot(SlotConfig):
    """VPC layout: either full props or just a CIDR."""

    props: VpcProps | None = None
    cidr: str | None = None
    max_azs: int | None = Field(default=None, ge=1)


class ServiceScalingSlot(SlotConfig):
    """Container service task count: fixed or auto-scaled between bounds."""

    desired_count: int | None = Field(default=None, ge=0)
    min_capacity: int | None = Field(default=None, ge=0)
    max_capacity: int | None = Field(default=None, ge=1)
    target_cpu_percent: int = Field(default=70, gt=0, le=100)

    @model_validator(mode="after")
    def _check_range(self) -> "ServiceScalingSlot":
        low, high = self.min_capacity, self.max_capacity
        if low is not None and high is not None and low > high:
            raise ValueError("min_capacity must not exceed max_capacity")
        return self


# =================================================================
# Precedence policies
# =================================================================


@dataclass(frozen=True)
class VariantRule:
    """One candidate shape of a slot, chosen when any of its fields is set."""

    kind: VariantKind
    fields: tuple[str, ...]
    params: Callable[[Any], dict[str, Any]]


@dataclass(frozen=True)
class SlotPolicy:
    """Ordered candidate rules of a slot plus its default."""

    slot: str
    rules: tuple[VariantRule, ...]
    default: VariantRule


def _serverless_params(config: DatabaseCapacitySlot) -> dict[str, Any]:
    low = config.serverless_min_capacity
    high = config.serverless_max_capacity
    if low is None:
        low = DEFAULT_SERVERLESS_MIN_CAPACITY
        if high is not None:
            low = min(low, high)
    if high is None:
        high = max(low, DEFAULT_SERVERLESS_MAX_CAPACITY)
    return {"min_capacity": low, "max_capacity": high, "reader_scales_with_writer": True}


def _vpc_cidr_params(config: VpcLayoutSlot) -> dict[str, Any]:
    return {
        "cidr": config.cidr or DEFAULT_VPC_CIDR,
        "max_azs": config.max_azs or DEFAULT_MAX_AZS,
        "nat_gateways": None,
        "subnets": tuple(subnet.model_dump() for subnet in DEFAULT_SUBNETS),
    }


def _vpc_props_params(config: VpcLayoutSlot) -> dict[str, Any]:
    props = config.props
    return {
        "cidr": props.cidr,
        "max_azs": props.max_azs,
        "nat_gateways": props.nat_gateways,
        "subnets": tuple(subnet.model_dump() for subnet in props.subnets),
    }


def _fixed_task_params(config: ServiceScalingSlot) -> dict[str, Any]:
    count = config.desired_count if config.desired_count is not None else DEFAULT_DESIRED_COUNT
    return {"desired_count": count, "min_capacity": count, "max_capacity": count}


def _auto_scaled_params(config: ServiceScalingSlot) -> dict[str, Any]:
    low = config.min_capacity if config.min_capacity is not None else 1
    high = config.max_capacity
    if high is None:
        high = max(low, DEFAULT_DESIRED_COUNT)
    return {
        "desired_count": low,
        "min_capacity": low,
        "max_capacity": high,
        "target_cpu_percent": config.target_cpu_percent,
    }


_POLICIES: dict[type[SlotConfig], SlotPolicy] = {
    DatabaseCapacitySlot: SlotPolicy(
        slot="database_capacity",
        rules=(
            VariantRule(
                VariantKind.PROVISIONED,
                ("instance_type",),
                lambda c: {"instance_type": c.instance_type},
            ),
            VariantRule(
                VariantKind.SERVERLESS,
                ("serverless_min_capacity", "serverless_max_capacity"),
                _serverless_params,
            ),
        ),
        default=VariantRule(VariantKind.SERVERLESS, (), _serverless_params),
    ),
    ListenerSlot: SlotPolicy(
        slot="listener",
        rules=(
            VariantRule(
                VariantKind.HTTPS,
                ("certificate_arn",),
                lambda c: {"protocol": "HTTPS", "port": 443, "certificate_arn": c.certificate_arn},
            ),
        ),
        default=VariantRule(VariantKind.HTTP, (), lambda c: {"protocol": "HTTP", "port": 80}),
    ),
    ReadScalingSlot: SlotPolicy(
        slot="read_scaling",
        rules=(
            VariantRule(
                VariantKind.TARGET_TRACKING,
                ("target_tracking",),
                lambda c: {
                    "min_capacity": c.min_capacity,
                    "max_capacity": c.max_capacity,
                    **c.target_tracking.model_dump(),
                },
            ),
            VariantRule(
                VariantKind.STEP_SCALING,
                ("step_scaling",),
                lambda c: {
                    "min_capacity": c.min_capacity,
                    "max_capacity": c.max_capacity,
                    **c.step_scaling.model_dump(),
                },
            ),
        ),
        default=VariantRule(VariantKind.FIXED, (), lambda c: {}),
    ),
    VpcLayoutSlot: SlotPolicy(
        slot="vpc_layout",
        rules=(
            VariantRule(VariantKind.CUSTOM, ("props",), _vpc_props_params),
            VariantRule(VariantKind.CIDR, ("cidr", "max_azs"), _vpc_cidr_params),
        ),
        default=VariantRule(VariantKind.CIDR, (), _vpc_cidr_params),
    ),
    ServiceScalingSlot: SlotPolicy(
        slot="service_scaling",
        rules=(
            VariantRule(
                VariantKind.AUTO_SCALED, ("min_capacity", "max_capacity"), _auto_scaled_params
            ),
            VariantRule(VariantKind.FIXED, ("desired_count",), _fixed_task_params),
        ),
        default=VariantRule(VariantKind.FIXED, (), _fixed_task_params),
    ),
}


def register_slot(config_type: type[SlotConfig], policy: SlotPolicy) -> None:
    """Register the precedence policy of an additional slot type."""
    _POLICIES[config_type] = policy


def _is_set(config: SlotConfig, name: str) -> bool:
    return getattr(config, name) is not None


def select(config: SlotConfig) -> ResourceVariant:
    """
    Select the variant of an optional-resource slot.

    Pure function of the configuration: identical input always yields the
    same variant.

    Raises:
        TypeError: If no policy is registered for the configuration type
    """
    policy = _POLICIES.get(type(config))
    if policy is None:
        raise TypeError(f"No selection policy registered for {type(config).__name__}")

    matching = [rule for rule in policy.rules if any(_is_set(config, f) for f in rule.fields)]
    chosen = matching[0] if matching else policy.default

    overridden = tuple(
        name
        for rule in matching[1:]
        for name in rule.fields
        if _is_set(config, name) and name not in chosen.fields
    )
    if overridden:
        logger.warning(
            "slot_fields_overridden",
            slot=policy.slot,
            selected=str(chosen.kind),
            overridden=list(overridden),
        )

    return ResourceVariant(
        slot=policy.slot,
        kind=chosen.kind,
        params=MappingProxyType(chosen.params(config)),
        is_default=not matching,
        overridden=overridden,
    )
