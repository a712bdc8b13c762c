"""Report generation for status polling runs."""

import json
import csv
import io

from .models import PollReport, PollAction

REPORT_FORMATS = ("json", "csv", "text", "detailed_text")


class ReportGenerator:
    """Generator for poll run reports in various formats."""

    def __init__(self, report: PollReport):
        """Initialize the report generator.

        Args:
            report: The poll report to generate output from.
        """
        self.report = report

    def to_json(self, include_details: bool = True, indent: int = 2) -> str:
        """Generate JSON representation of the report.

        Args:
            include_details: If True, include per-intent outcomes.
            indent: JSON indentation level.
        """
        if include_details:
            data = self.report.to_full_dict()
        else:
            data = self.report.to_summary_dict()
        return json.dumps(data, indent=indent)

    def to_csv(self) -> str:
        """One row per checked intent."""
        output = io.StringIO()
        writer = csv.writer(output)
        writer.writerow([
            "reference", "action", "provider_status", "status",
            "resolved_via", "message", "checked_at",
        ])
        for outcome in self.report.outcomes:
            writer.writerow([
                outcome.reference,
                outcome.action.value,
                outcome.provider_status or "",
                outcome.status or "",
                outcome.resolved_via or "",
                outcome.message or "",
                outcome.checked_at.isoformat(),
            ])
        return output.getvalue()

    def to_summary_text(self) -> str:
        """Generate a human-readable text summary of the run."""
        summary = self.report.to_summary_dict()
        stats = summary["statistics"]

        lines = [
            "=" * 60,
            "STATUS POLL SUMMARY",
            "=" * 60,
            f"Run ID: {summary['id']}",
            f"Status: {summary['status']}",
            f"Grace Period: {summary['grace_seconds']}s",
            f"Cutoff: {summary['cutoff']}",
            "",
            "Statistics:",
            f"  Candidates: {stats['total_candidates']}",
            f"  Resolved: {stats['total_resolved']}",
            f"  Already Resolved: {stats['total_already_resolved']}",
            f"  Still Pending: {stats['total_still_pending']}",
            f"  Failed Checks: {stats['total_check_failed']}",
            f"  Resolution Rate: {stats['resolution_rate']}",
            "",
            f"Created At: {summary['created_at']}",
            f"Completed At: {summary['completed_at'] or 'N/A'}",
        ]

        if summary.get("error_message"):
            lines.extend([
                "",
                "Error:",
                f"  {summary['error_message']}",
            ])

        lines.append("=" * 60)

        return "\n".join(lines)

    def to_detailed_text(self) -> str:
        """Summary followed by outcomes grouped by action."""
        lines = [self.to_summary_text(), ""]

        for action in PollAction:
            group = [o for o in self.report.outcomes if o.action == action]
            if not group:
                continue
            lines.extend([
                f"{action.value.upper().replace('_', ' ')} ({len(group)})",
                "-" * 40,
            ])
            for o in group:
                line = f"  {o.reference}: provider={o.provider_status or '-'} status={o.status or '-'}"
                if o.resolved_via:
                    line += f" via={o.resolved_via}"
                if o.message:
                    line += f" ({o.message})"
                lines.append(line)
            lines.append("")

        return "\n".join(lines)

    def render(self, format: str = "json", include_details: bool = True) -> str:
        """Render the report in one of REPORT_FORMATS.

        Raises:
            ValueError: If the format is unknown.
        """
        if format == "json":
            return self.to_json(include_details=include_details)
        if format == "csv":
            return self.to_csv()
        if format == "text":
            return self.to_summary_text()
        if format == "detailed_text":
            return self.to_detailed_text()
        raise ValueError(f"Unsupported format: {format}")
