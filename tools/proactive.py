"""
Proactive suggestions.
"""

from tools import tool


@tool
async def recommend_next_step(recommendation: str, reasoning: str = None, ctx=None) -> dict:
    """Suggest a proactive action or next step to the user. The suggestion is sent to
    them as a separate message.

    Args:
        recommendation: The human readable suggestion.
        reasoning: Why this is recommended now.
    """
    text = f"💡 Proactive Suggestion:\n{recommendation}\n\nWhy? {reasoning or 'Based on your current activity.'}"
    await ctx.send_message(text)
    return {"sent": True}
