from __future__ import annotations


class CampaignQAError(Exception):
    """Base class for errors raised by the campaign QA tool."""


class MalformedInputError(CampaignQAError):
    """The grid has no header row or no data rows."""


class InvalidSourceError(CampaignQAError):
    """The spreadsheet reference could not be parsed."""


class SourceAccessError(CampaignQAError):
    """The spreadsheet exists in principle but could not be read."""


class AgentError(CampaignQAError):
    """The automation agent did not produce a usable response."""


class AgentTimeoutError(AgentError):
    """The automation agent exceeded its wall-clock budget."""
