"""
Relabel pipeline compilation for PodMonitor endpoints.

The primary chain is emitted in a fixed order; later rules may overwrite
labels written by earlier ones, so the order below is part of the output
contract:

    1. job -> __tmp_prometheus_job_name
    2. drop Failed/Succeeded pods (unless filterRunning is false)
    3. selector matchLabels / matchExpressions
    4. container port selection
    5. namespace, container, pod
    6. podTargetLabels
    7. static job = <namespace>/<name>
    8. jobLabel override
    9. endpoint relabelings
   10. endpoint = <port>

The metric relabel chain holds only the endpoint's metricRelabelings. Every
rule in either chain goes through with_defaults and validate_rule.
"""

import re
from dataclasses import replace
from typing import Iterable, Optional

import re2

from .errors import ValidationError
from .models import Endpoint, LabelSelector, PodMonitor, RelabelRule

DEFAULT_ACTION = "replace"
DEFAULT_SEPARATOR = ";"
DEFAULT_REGEX = "(.*)"
DEFAULT_REPLACEMENT = "$1"

VALID_ACTIONS = ["replace", "keep", "drop", "hashmod", "labelmap", "labeldrop", "labelkeep"]

META_PREFIX = "__meta_kubernetes_"
POD_LABEL_PREFIX = "__meta_kubernetes_pod_label_"
POD_LABEL_PRESENT_PREFIX = "__meta_kubernetes_pod_labelpresent_"
TMP_JOB_LABEL = "__tmp_prometheus_job_name"

INVALID_LABEL_CHAR_RE = re.compile(r"[^a-zA-Z0-9_]")


def sanitize_label_name(name: str) -> str:
    """Replace every character outside [A-Za-z0-9_] with an underscore."""
    return INVALID_LABEL_CHAR_RE.sub("_", name)


def with_defaults(rule: RelabelRule) -> RelabelRule:
    """
    Resolve the unset fields of a rule.

    Unset action, separator, regex and replacement become replace, ";",
    "(.*)" and "$1". Actions are case-insensitive and normalized to lowercase.
    """
    return replace(
        rule,
        action=DEFAULT_ACTION if rule.action is None else rule.action.lower(),
        separator=DEFAULT_SEPARATOR if rule.separator is None else rule.separator,
        regex=DEFAULT_REGEX if rule.regex is None else rule.regex,
        replacement=DEFAULT_REPLACEMENT if rule.replacement is None else rule.replacement,
    )


def validate_rule(rule: RelabelRule) -> None:
    """
    Validate a defaulted rule the way the Prometheus config loader does.

    Raises:
        ValidationError: With `field` naming the offending attribute
    """
    if rule.action not in VALID_ACTIONS:
        raise ValidationError(
            f"unknown relabel action {rule.action!r}, must be one of {VALID_ACTIONS}",
            field="action",
        )

    # Prometheus compiles relabel regexes with RE2, anchored.
    try:
        re2.compile(f"^(?:{rule.regex})$")
    except re2.error as e:
        raise ValidationError(f"invalid regex {rule.regex!r}: {e}", field="regex") from e

    if rule.action in ("replace", "hashmod") and not rule.target_label:
        raise ValidationError(f"relabel action {rule.action} requires target_label", field="target_label")

    if rule.action == "hashmod" and not (rule.modulus and rule.modulus > 0):
        raise ValidationError("relabel action hashmod requires a positive modulus", field="modulus")

    if rule.action in ("labeldrop", "labelkeep") and rule.source_labels:
        raise ValidationError(
            f"relabel action {rule.action} does not accept source_labels",
            field="source_labels",
        )

    if rule.action in ("labeldrop", "labelkeep") and (rule.target_label or rule.modulus):
        raise ValidationError(
            f"relabel action {rule.action} only accepts regex",
            field="target_label" if rule.target_label else "modulus",
        )


class Relabeler:
    """Accumulates defaulted and validated relabel rules in emission order."""

    def __init__(self):
        self.rules: list[RelabelRule] = []

    def add(self, *rules: RelabelRule) -> None:
        for rule in rules:
            rule = with_defaults(rule)
            validate_rule(rule)
            self.rules.append(rule)

    def add_declared(self, rules: Iterable[RelabelRule], field: str) -> None:
        """Append user-declared rules, tagging validation errors with their position."""
        for i, rule in enumerate(rules):
            try:
                self.add(rule)
            except ValidationError as e:
                raise ValidationError(e.message, field=f"{field}[{i}].{e.field}") from e


def selector_rules(selector: Optional[LabelSelector]) -> list[RelabelRule]:
    """Translate a label selector into keep/drop rules on pod label meta-labels."""
    if selector is None:
        return []

    rules = []
    for key, value in sorted(selector.match_labels.items()):
        name = sanitize_label_name(key)
        rules.append(RelabelRule(
            action="keep",
            source_labels=(POD_LABEL_PREFIX + name, POD_LABEL_PRESENT_PREFIX + name),
            regex=f"({value});true",
        ))

    for i, expr in enumerate(selector.match_expressions):
        name = sanitize_label_name(expr.key)
        field = f"selector.matchExpressions[{i}]"

        if expr.operator in ("In", "NotIn"):
            if not expr.values:
                raise ValidationError(
                    f"operator {expr.operator} requires at least one value",
                    field=f"{field}.values",
                )
            rules.append(RelabelRule(
                action="keep" if expr.operator == "In" else "drop",
                source_labels=(POD_LABEL_PREFIX + name, POD_LABEL_PRESENT_PREFIX + name),
                regex=f"({'|'.join(expr.values)});true",
            ))
        elif expr.operator in ("Exists", "DoesNotExist"):
            rules.append(RelabelRule(
                action="keep" if expr.operator == "Exists" else "drop",
                source_labels=(POD_LABEL_PRESENT_PREFIX + name,),
                regex="true",
            ))
        else:
            raise ValidationError(
                f"unsupported selector operator {expr.operator!r}",
                field=f"{field}.operator",
            )

    return rules


def port_rule(endpoint: Endpoint) -> RelabelRule:
    """Keep only targets whose container port matches the endpoint port."""
    if endpoint.port is None or endpoint.port == "":
        raise ValidationError("endpoint must declare a port name or number", field="port")
    if isinstance(endpoint.port, int):
        return RelabelRule(
            action="keep",
            source_labels=(META_PREFIX + "pod_container_port_number",),
            regex=str(endpoint.port),
        )
    return RelabelRule(
        action="keep",
        source_labels=(META_PREFIX + "pod_container_port_name",),
        regex=endpoint.port,
    )


def compile_relabelings(monitor: PodMonitor, endpoint: Endpoint) -> list[RelabelRule]:
    """Build the primary relabel chain for one endpoint of a monitor."""
    r = Relabeler()
    spec = monitor.spec

    r.add(RelabelRule(source_labels=("job",), target_label=TMP_JOB_LABEL))

    if endpoint.filter_running is not False:
        r.add(RelabelRule(
            source_labels=(META_PREFIX + "pod_phase",),
            regex="(Failed|Succeeded)",
            action="drop",
        ))

    r.add(*selector_rules(spec.selector))
    r.add(port_rule(endpoint))

    r.add(
        RelabelRule(source_labels=(META_PREFIX + "namespace",), target_label="namespace"),
        RelabelRule(source_labels=(META_PREFIX + "pod_container_name",), target_label="container"),
        RelabelRule(source_labels=(META_PREFIX + "pod_name",), target_label="pod"),
    )

    for label in spec.pod_target_labels:
        name = sanitize_label_name(label)
        r.add(RelabelRule(
            source_labels=(POD_LABEL_PREFIX + name,),
            target_label=name,
            regex="(.+)",
            replacement="${1}",
        ))

    r.add(RelabelRule(target_label="job", replacement=f"{monitor.namespace}/{monitor.name}"))

    # Must follow the static job rule so a non-empty pod label wins.
    if spec.job_label:
        r.add(RelabelRule(
            source_labels=(POD_LABEL_PREFIX + sanitize_label_name(spec.job_label),),
            target_label="job",
            regex="(.+)",
            replacement="${1}",
        ))

    r.add_declared(endpoint.relabelings, "relabelings")

    r.add(RelabelRule(target_label="endpoint", replacement=endpoint.port_label))

    return r.rules


def compile_metric_relabelings(endpoint: Endpoint) -> list[RelabelRule]:
    """Build the metric relabel chain; it contains only declared rules."""
    r = Relabeler()
    r.add_declared(endpoint.metric_relabelings, "metricRelabelings")
    return r.rules
