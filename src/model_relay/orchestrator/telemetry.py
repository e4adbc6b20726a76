"""Telemetry record construction and aggregation."""

from __future__ import annotations

from collections.abc import Iterable
from typing import TypeVar

from model_relay.orchestrator.models import ProviderBinding, TelemetryRecord
from model_relay.orchestrator.pricing import compute_cost
from model_relay.utils import utc_now

MIXED = "mixed"

T = TypeVar("T")


def build_telemetry_record(
    *,
    command_name: str,
    binding: ProviderBinding,
    input_tokens: int,
    output_tokens: int,
) -> TelemetryRecord:
    """Build one telemetry record for a successful provider call."""

    cost = compute_cost(
        provider=binding.provider,
        model_id=binding.model_id,
        input_tokens=input_tokens,
        output_tokens=output_tokens,
    )
    return TelemetryRecord(
        command_name=command_name,
        role=binding.role,
        provider=binding.provider,
        model_id=binding.model_id,
        input_tokens=input_tokens,
        output_tokens=output_tokens,
        total_tokens=input_tokens + output_tokens,
        total_cost=cost.total_cost,
        currency=cost.currency,
        timestamp=utc_now(),
    )


def merge_telemetry(
    records: Iterable[TelemetryRecord | None],
    *,
    command_name: str | None = None,
) -> TelemetryRecord | None:
    """Sum tokens and costs across records from one logical command.

    Records must share a command name unless `command_name` relabels the
    aggregate. Role, provider and model are kept when every record agrees;
    otherwise the role is None and provider/model read `MIXED`. The merged
    cost is None only when no record carries a known cost.
    """

    present = [record for record in records if record is not None]
    if not present:
        return None

    command_names = {record.command_name for record in present}
    if command_name is None and len(command_names) > 1:
        raise ValueError(
            "Cannot merge telemetry from different commands: "
            f"{', '.join(sorted(command_names))}",
        )

    first = present[0]
    known_costs = [record.total_cost for record in present if record.total_cost is not None]
    return TelemetryRecord(
        command_name=command_name or first.command_name,
        role=_common(record.role for record in present),
        provider=_common(record.provider for record in present) or MIXED,
        model_id=_common(record.model_id for record in present) or MIXED,
        input_tokens=sum(record.input_tokens for record in present),
        output_tokens=sum(record.output_tokens for record in present),
        total_tokens=sum(record.total_tokens for record in present),
        total_cost=sum(known_costs) if known_costs else None,
        currency=first.currency,
        timestamp=max(record.timestamp for record in present),
    )


def _common(values: Iterable[T]) -> T | None:
    distinct = set(values)
    if len(distinct) == 1:
        return distinct.pop()
    return None
