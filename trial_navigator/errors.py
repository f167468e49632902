class SourceError(Exception):
    """An external data source could not answer."""


class ScriApiError(SourceError):
    pass


class RegistryError(SourceError):
    pass


class UnknownToolError(Exception):
    def __init__(self, tool_name: str):
        super().__init__(f"Unknown tool: {tool_name}")
        self.tool_name = tool_name


class ToolArgumentError(Exception):
    pass


class ModelEndpointError(Exception):
    pass


class MissingCredentialsError(Exception):
    pass
