from .search_workflow import (
    handle_convert_button,
    handle_download_episode,
    handle_download_season,
    handle_navigation,
    handle_search_type,
    handle_search_workflow,
    handle_select_season,
    handle_watch,
    handle_watch_tv,
    prompt_search_type,
    send_movie_sources,
)

__all__ = [
    "handle_convert_button",
    "handle_download_episode",
    "handle_download_season",
    "handle_navigation",
    "handle_search_type",
    "handle_search_workflow",
    "handle_select_season",
    "handle_watch",
    "handle_watch_tv",
    "prompt_search_type",
    "send_movie_sources",
]
