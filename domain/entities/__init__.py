from domain.entities.bot_response import BotResponse, LatestTextRecord, ResponseMetadata, ResponseVersion

__all__ = ["BotResponse", "LatestTextRecord", "ResponseMetadata", "ResponseVersion"]
