"""
Prompt templates for summarization.

Design philosophy:
- One system prompt shared by every call
- Article and podcast variants differ only in what they ask for
- Long content is summarized section by section, then combined
"""

SUMMARY_SYSTEM = """You are an expert content analyst. Your goal is to
extract and preserve every important concept, insight and piece of
actionable information in the content you are given.

Guidelines:
- Be thorough but concise; no padding
- Preserve technical accuracy and nuance
- Identify practical applications
- Note connections to broader ideas or fields
- Surface surprising or non-obvious insights

Always respond with valid JSON matching the requested schema."""

ARTICLE_SUMMARY_USER = """Analyze this content and produce a complete summary.

<article>
Title: {title}

Content:
{content}
</article>

Field guidance:
- headline: a compelling one-line hook, at most 100 characters
- tldr: 2-3 sentences capturing the essence
- full_summary: a detailed 200-400 word summary of all main points
- key_points: the main points as short bullets
- key_takeaways: core lessons, each with context, an optional concrete
  action, a confidence between 0 and 1, and a supporting quote if one exists
- related_ideas: connected concepts, each categorised as extension,
  counterpoint, application or question
- allied_trivia: interesting related facts and why they are relevant

Do not omit any significant idea."""

PODCAST_SUMMARY_USER = """Analyze this episode transcript and produce a complete summary.

<episode>
Title: {title}
Duration: {duration}

Transcript:
{content}
</episode>

Field guidance:
- headline: a compelling one-line hook, at most 100 characters
- tldr: 2-3 sentences on what the episode covers
- full_summary: a detailed 300-500 word summary of the discussion
- key_points: the main points as short bullets
- key_takeaways: core lessons with context, optional action, confidence
  between 0 and 1, a supporting quote from a speaker, and the approximate
  timestamp when one is mentioned
- speakers: each identifiable speaker with their role (host, guest,
  expert) and their main contributions
- related_ideas: connected concepts, each categorised as extension,
  counterpoint, application or question
- allied_trivia: interesting related facts mentioned and why they matter

Valuable insights often hide in casual conversation; capture them."""

CHUNK_NOTES_USER = """Analyze section {index} of {total} of a longer piece titled "{title}".
{position_note}

<section>
{content}
</section>

Extract main points, insights, key terms, notable quotes and open
questions. Be thorough: these notes will be combined with the other
sections."""

COMBINE_SUMMARY_USER = """Synthesize these section notes into one final summary.

Original title: {title}
Style: {style}

<section_notes>
{notes}
</section_notes>

Merge overlapping points and make sure nothing important from any section
is lost. Follow the same field guidance as a single-pass summary{speaker_note}."""
