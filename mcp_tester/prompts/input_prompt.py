input_system_prompt = """You are an expert in generating test inputs for tools accessed through MCP (Model Context Protocol) servers.
Your task is to derive concrete arguments for the tool "{tool_name}" from its JSON schema and a user's request.
Return valid JSON with no explanation or comments."""

input_prompt = """{tool_definition}
Parameters (JSON schema):
{parameters}
{source_section}
User request: "{query}"
Test scenario: {scenario}

Generate the arguments for this tool call as a JSON object.
- Include every required parameter and use the types the schema declares.
- Use the specific values mentioned in the request; avoid generic placeholders.
- For an error scenario keep the arguments well-formed, but choose values that should make the tool fail (e.g. a path that does not exist, an out-of-range number).

Only return the JSON object with no additional explanation or formatting."""
