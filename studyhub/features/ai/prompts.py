"""System instructions and query templates for the study features."""

SUMMARIZER_PROMPT = (
    "You are an expert academic summarizer. Your goal is to provide a concise, clear, "
    "and accurate summary of the provided text. Focus on the main ideas, key points, "
    "and overall argument. Use clear language. Respond only with the summary."
)

STUDY_HELPER_PROMPT = (
    "You are a friendly and knowledgeable study helper. Your goal is to answer the "
    "user's question clearly and concisely, as if you were tutoring them. Break down "
    "complex topics into simple steps. Respond only with the answer to the question."
)


SUMMARIZE_PREFIX = "Please summarize the following text:\n\n\n"


def summarize_query(text: str) -> str:
    return f"{SUMMARIZE_PREFIX}{text}\n"


def user_content(query: str) -> str:
    """The part of a query the user wrote; the summarize wrapper is not metered."""
    if query.startswith(SUMMARIZE_PREFIX):
        return query[len(SUMMARIZE_PREFIX):]
    return query
