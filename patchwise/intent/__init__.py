"""Intent classification, routing and target discovery."""

from .file_intent import (
    FileActionIntent, FileTarget, RouteContext, classify_file_action_intent,
    extract_file_mentions, extract_instructions,
    implies_multi_file, MULTI_FILE_INDICATORS,
)
from .router import (
    route, RouteDecision, FileOpenRoute, FileEditRoute, FileEditAutoSearchRoute,
    MultiFileEditRoute, ChatRoute,
)
from .file_search import (
    search_files_for_edit, extract_search_keywords, SearchCandidate,
    HIGH_CONFIDENCE_THRESHOLD, PREFERRED_FILENAME_STEMS,
)
from .simple_edit import apply_simple_edit
