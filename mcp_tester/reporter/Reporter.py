import json
import logging
import os
import sys
from collections import OrderedDict
from typing import Dict, List, Optional, TextIO

from jinja2 import Environment, select_autoescape
from pydantic import TypeAdapter

from ..type.types_def import TesterConfig, TestResult

logger = logging.getLogger(__name__)

_results_adapter = TypeAdapter(List[TestResult])

HTML_TEMPLATE = """<!DOCTYPE html>
<html lang="en">
<head>
  <meta charset="UTF-8">
  <meta name="viewport" content="width=device-width, initial-scale=1.0">
  <title>MCP Server Test Report{% if server %} - {{ server }}{% endif %}</title>
  <link href="https://cdn.jsdelivr.net/npm/bootstrap@5.3.0/dist/css/bootstrap.min.css" rel="stylesheet">
  <style>
    body { padding: 20px; }
    pre { margin: 0; white-space: pre-wrap; }
    .error-details ul { margin: 0; padding-left: 1.2em; color: #b02a37; }
  </style>
</head>
<body>
  <div class="container">
    <h1>MCP Server Test Report</h1>
    {% if server %}<p class="lead">Server: {{ server }}</p>{% endif %}
    <div class="card mb-4">
      <div class="card-body">
        <span class="badge bg-secondary">Total: {{ summary.total }}</span>
        <span class="badge bg-success">Passed: {{ summary.passed }}</span>
        <span class="badge bg-danger">Failed: {{ summary.failed }}</span>
        <span class="badge bg-warning text-dark">Pass rate: {{ summary.pass_rate }}%</span>
      </div>
    </div>
    {% for tool_name, tool in tools.items() %}
    <div class="card mb-4">
      <div class="card-header">
        <h5>Tool: {{ tool_name }}</h5>
        <span class="badge bg-primary">{{ tool.passed }}/{{ tool.total }} - {{ tool.pass_rate }}%</span>
      </div>
      <div class="card-body">
        <table class="table">
          <thead>
            <tr><th>Status</th><th>Description</th><th>Inputs</th><th>Time</th><th>Errors</th></tr>
          </thead>
          <tbody>
            {% for result in tool.results %}
            <tr>
              <td>{% if result.passed %}<span class="badge bg-success">PASS</span>{% else %}<span class="badge bg-danger">FAIL</span>{% endif %}</td>
              <td>{{ result.test_case.description }}</td>
              <td><pre>{{ result.test_case.inputs | tojson(indent=2) }}</pre></td>
              <td>{% if result.execution_time_ms is not none %}{{ "%.0f" | format(result.execution_time_ms) }} ms{% endif %}</td>
              <td>{% if not result.passed and result.validation_errors %}
                <div class="error-details"><ul>{% for error in result.validation_errors %}<li>{{ error }}</li>{% endfor %}</ul></div>
              {% endif %}</td>
            </tr>
            {% endfor %}
          </tbody>
        </table>
      </div>
    </div>
    {% endfor %}
  </div>
</body>
</html>
"""

_env = Environment(autoescape=select_autoescape(default_for_string=True, default=True))


def summarize(results: List[TestResult]) -> Dict[str, int]:
    total = len(results)
    passed = sum(1 for r in results if r.passed)
    return {
        "total": total,
        "passed": passed,
        "failed": total - passed,
        "pass_rate": round(passed * 100 / total) if total else 0,
    }


def group_by_tool(results: List[TestResult]) -> "OrderedDict[str, List[TestResult]]":
    """Group results by tool, keeping first-seen tool order and result order."""
    grouped: "OrderedDict[str, List[TestResult]]" = OrderedDict()
    for result in results:
        grouped.setdefault(result.test_case.tool_name, []).append(result)
    return grouped


class Reporter:
    """Renders test results to the console and, optionally, a report file."""

    def __init__(self, out: Optional[TextIO] = None) -> None:
        self.out = out or sys.stdout
        self._written: set = set()

    def generate_report(self, results: List[TestResult], config: TesterConfig, server_name: Optional[str] = None) -> Optional[str]:
        """
        Print a console summary and write a report file when the config asks for one.

        Returns:
            Path of the written report file, if any.
        """
        print(self.render_console(results, server_name), file=self.out)

        if config.output_format == "console" or not config.output_path:
            return None
        return self.write_report(results, config, server_name)

    def render_console(self, results: List[TestResult], server_name: Optional[str] = None) -> str:
        return self.render_text(results, server_name, console=True)

    def render_text(self, results: List[TestResult], server_name: Optional[str] = None, console: bool = False) -> str:
        summary = summarize(results)
        lines = [
            "=======================================",
            "         MCP SERVER TEST REPORT        ",
            "=======================================",
        ]
        if server_name:
            lines.append(f"Server: {server_name}")
        lines += [
            f"Total tests: {summary['total']}",
            f"Passed: {summary['passed']}",
            f"Failed: {summary['failed']}",
            f"Pass rate: {summary['pass_rate']}%",
            "=======================================",
            "",
        ]

        for tool_name, tool_results in group_by_tool(results).items():
            tool_summary = summarize(tool_results)
            lines.append(
                f"Tool: {tool_name} ({tool_summary['passed']}/{tool_summary['total']} - {tool_summary['pass_rate']}%)"
            )
            lines.append("")
            for result in tool_results:
                if console:
                    status = "✓ PASS" if result.passed else "✗ FAIL"
                else:
                    status = "[PASS]" if result.passed else "[FAIL]"
                lines.append(f"  {status} {result.test_case.description}")
                if not result.passed:
                    lines.extend(f"    → {error}" for error in result.validation_errors)
            lines.append("")

        return "\n".join(lines)

    def render_json(self, results: List[TestResult]) -> str:
        return json.dumps(_results_adapter.dump_python(results, mode="json", by_alias=True), ensure_ascii=False, indent=2)

    def render_html(self, results: List[TestResult], server_name: Optional[str] = None) -> str:
        tools = OrderedDict()
        for tool_name, tool_results in group_by_tool(results).items():
            tools[tool_name] = {**summarize(tool_results), "results": tool_results}
        template = _env.from_string(HTML_TEMPLATE)
        return template.render(server=server_name, summary=summarize(results), tools=tools)

    def output_path_for(self, output_path: str, server_name: Optional[str]) -> str:
        """A second report in the same run gets the server name appended before the extension."""
        if output_path not in self._written or not server_name:
            return output_path
        root, ext = os.path.splitext(output_path)
        return f"{root}-{server_name}{ext}"

    def write_report(self, results: List[TestResult], config: TesterConfig, server_name: Optional[str] = None) -> str:
        output_path = self.output_path_for(config.output_path, server_name)
        output_dir = os.path.dirname(output_path)
        if output_dir:
            os.makedirs(output_dir, exist_ok=True)

        if config.output_format == "json":
            content = self.render_json(results)
        elif config.output_format == "html":
            content = self.render_html(results, server_name)
        else:
            content = self.render_text(results, server_name)

        with open(output_path, "w", encoding="utf-8") as f:
            f.write(content)
        self._written.add(config.output_path)
        self._written.add(output_path)
        logger.info(f"{config.output_format.upper()} report written to: {output_path}")
        return output_path
