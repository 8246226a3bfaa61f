"""
LLM prompts and user-facing messages used throughout the application.

All prompts are centralized here for easy maintenance and consistency.
"""

# ============================================================================
# Chat System Prompts
# ============================================================================

VIDEO_SYSTEM_PROMPT_TEMPLATE = """You are an assistant that answers questions about the video: {title}. Here is the transcript:

{transcript}"""

NO_CHAPTERS_SYSTEM_PROMPT = """You are a helpful AI assistant. The user has not selected any video chapters for context. You can answer general questions or help them understand how to select chapters to discuss video content."""

# ============================================================================
# Messages
# ============================================================================

SESSION_INIT_FAILED = "Failed to initialize AI session"
STREAMING_ERROR = "Error while generating response"
MODEL_UNAVAILABLE = "The language model is not available. Set OPENAI_API_KEY to enable chat."
CHAPTERS_REMOVED_TEMPLATE = "Chapters {chapters} removed (context limit)"
NOTHING_FITS = "None of the selected chapters fit in the model's context window."
