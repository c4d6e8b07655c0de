eval_system_prompt = """You are helping to generate test cases for a tool called "{tool_name}" exposed by an MCP (Model Context Protocol) server.
Generate a natural language request that a user might ask an AI assistant, which would lead the assistant to use this tool.
The request should be realistic and relate to the tool's purpose.
Only return the request text with no additional explanation or formatting."""

eval_prompt = """{tool_definition}
Parameters (JSON schema):
{parameters}
{source_section}
Test scenario: {scenario}

Craft a single, fluent request that fits this scenario, as if you're asking for help with a specific task. Use concrete, plausible values (file names, versions, identifiers) rather than placeholders. Make it sound like a real user request rather than a technical specification.

Natural language request:"""
