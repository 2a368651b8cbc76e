from .api import ApiError, ChatApiClient  # noqa: F401
from .chat_view import ChatView  # noqa: F401
from .sse import SSEDecoder, iter_sse_events  # noqa: F401
