tool_system_prompt = """You are an expert in testing tools accessed through MCP (Model Context Protocol) servers.
Your task is to predict the outcome of one call to the tool "{tool_name}" and write assertion rules that check its response.
Validation rules are evaluated automatically, so each rule must be clear, unambiguous and machine-checkable.
Return valid JSON with no explanation or comments."""

tool_prompt = """{tool_definition}
Parameters (JSON schema):
{parameters}
{source_section}
User request: "{query}"
Test scenario: {scenario}
Arguments: {inputs}

## Response shape
The tool response is checked as a JSON document of this form:
```json
{{
  "content": [{{"type": "text", "text": "raw text output", "json": {{ /* present only when the text is JSON */ }}}}],
  "structuredContent": {{ /* present only when the tool declares an output schema */ }},
  "isError": false
}}
```
A rule's `target` is a dotted path into that document; list items are addressed by index, e.g. `content.0.text`, `content.0.json.items`, `structuredContent.count`.

## Rule types
- `contains`: the target (a string) contains `value` as a substring, or the target (an array) has `value` as an element.
- `matches`: the target equals `value` exactly (deep equality for objects and arrays). Wrap `value` in slashes to test a regular expression against a string target instead, e.g. `"/^build-\\\\d+$/"`.
- `hasProperty`: the property at `target` exists (its value may be null or empty).

Prefer `hasProperty` and regular expressions for output that varies between runs; use exact `matches` only for fixed outputs. Use 1-4 rules. For an expected error, rules are optional.

## Output Format
```json
{{
  "status": "success|error",
  "description": "A brief but precise description of the test scenario and its intent.",
  "validationRules": [
    {{
      "type": "contains|matches|hasProperty",
      "target": "path.to.field",
      "value": "expected value",
      "message": "Custom failure explanation for this rule."
    }}
  ]
}}
```

Only return the JSON object with no additional explanation."""
