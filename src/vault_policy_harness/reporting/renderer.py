"""Report rendering.

Both renderers are pure functions of a ResultSet: the same serialized data
always renders to the same bytes. Nothing here reads the clock or the
environment; the report timestamp is the ResultSet's ``generated_at``.

Markdown layout:

1. Title and run metadata
2. Teardown failures (only when present, before anything else)
3. Summary counts and success rate
4. Policy x mode outcome matrix
5. One section per category, in category order, with per-policy outcomes,
   narrative and remediation
"""

from vault_policy_harness.core.models import MODE_ORDER, Category, ResultSet, TestResult
from vault_policy_harness.reporting.recorder import summarize

_NOT_RUN = "-"


def _cell(value: str) -> str:
    return value.replace("|", "\\|").replace("\r", " ").replace("\n", " ").strip()


def _table(header: list[str], rows: list[list[str]]) -> list[str]:
    lines = [
        "| " + " | ".join(header) + " |",
        "|" + "|".join("---" for _ in header) + "|",
    ]
    lines.extend("| " + " | ".join(_cell(value) for value in row) + " |" for row in rows)
    return lines


def _policies_in_order(results: list[TestResult]) -> list[str]:
    """Case ids ordered by category, then by first appearance."""
    first_seen: dict[str, int] = {}
    categories: dict[str, Category] = {}
    for index, result in enumerate(results):
        first_seen.setdefault(result.case_id, index)
        categories.setdefault(result.case_id, result.category)
    category_rank = {category: rank for rank, category in enumerate(Category)}
    return sorted(first_seen, key=lambda case_id: (category_rank[categories[case_id]], first_seen[case_id]))


def render_report(result_set: ResultSet) -> bytes:
    """Render the Markdown report.

    Args:
        result_set: The run's results.

    Returns:
        UTF-8 encoded Markdown.
    """
    results = list(result_set.results)
    summary = summarize(results, result_set.teardown_failures, result_set.aborted)
    lines: list[str] = [
        "# Key Vault Policy Compliance Report",
        "",
        f"- Run: `{result_set.run_id}`",
        f"- Subscription: `{result_set.subscription}`",
        f"- Generated: {result_set.generated_at.isoformat()}",
        "",
    ]

    if result_set.teardown_failures:
        lines += [
            "## Teardown Failures",
            "",
            "**The items below were not released and need manual cleanup. "
            "A leaked Deny assignment keeps blocking resource creation in the subscription.**",
            "",
        ]
        lines += _table(
            ["Kind", "Target", "Error"],
            [[f.kind, f.target, f.error] for f in result_set.teardown_failures],
        )
        lines.append("")

    if result_set.aborted:
        lines += ["> Run aborted by the operator. Remaining scenarios were recorded as Skipped.", ""]

    lines += ["## Summary", ""]
    lines += _table(
        ["Total", "Passed", "Failed", "Errors", "Skipped", "Success rate"],
        [[
            str(summary.total),
            str(summary.passed),
            str(summary.failed),
            str(summary.errored),
            str(summary.skipped),
            f"{summary.success_rate:.2f}%",
        ]],
    )
    lines.append("")

    if not results:
        lines += ["No scenarios were recorded.", ""]
        return "\n".join(lines).encode("utf-8")

    by_case: dict[str, dict[str, TestResult]] = {}
    for result in results:
        by_case.setdefault(result.case_id, {})[result.mode.value] = result
    ordered = _policies_in_order(results)

    lines += ["## Policy x Mode Matrix", ""]
    lines += _table(
        ["Policy", "Category", *(mode.value for mode in MODE_ORDER)],
        [
            [
                next(iter(by_case[case_id].values())).policy_name,
                next(iter(by_case[case_id].values())).category.value,
                *(
                    by_case[case_id][mode.value].outcome.value if mode.value in by_case[case_id] else _NOT_RUN
                    for mode in MODE_ORDER
                ),
            ]
            for case_id in ordered
        ],
    )
    lines.append("")

    for category in Category:
        case_ids = [case_id for case_id in ordered if next(iter(by_case[case_id].values())).category == category]
        if not case_ids:
            continue
        lines += [f"## {category.value}", ""]
        for case_id in case_ids:
            lines += _render_case(by_case[case_id])

    return "\n".join(lines).encode("utf-8")


def _render_case(by_mode: dict[str, TestResult]) -> list[str]:
    sample = next(iter(by_mode.values()))
    lines = [f"### {sample.policy_name}", "", f"- Policy: `{sample.policy_id}`"]
    if sample.framework_tags:
        lines.append(f"- Frameworks: {', '.join(sample.framework_tags)}")
    lines.append("")

    rows = []
    for mode in MODE_ORDER:
        result = by_mode.get(mode.value)
        if result is None:
            continue
        details = result.details
        if result.error_message:
            details = f"{details} (error: {result.error_message})" if details else f"error: {result.error_message}"
        rows.append([mode.value, result.outcome.value, details])
    lines += _table(["Mode", "Outcome", "Details"], rows)
    lines.append("")

    for label, text in (
        ("Before", sample.before_state),
        ("Requirement", sample.requirement),
        ("Verification", sample.verification_method),
        ("Benefits", sample.benefits),
        ("Next steps", sample.next_steps),
    ):
        if text:
            lines += [f"**{label}:** {text.strip()}", ""]

    if sample.remediation_snippet:
        lines += ["```bash", sample.remediation_snippet.strip(), "```", ""]
    return lines


def render_json(result_set: ResultSet) -> bytes:
    """Render the machine-readable results artifact (camelCase JSON)."""
    return (result_set.model_dump_json(by_alias=True, indent=2) + "\n").encode("utf-8")
