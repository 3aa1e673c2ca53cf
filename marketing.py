# marketing.py
"""Gemini-backed copywriting helpers for the admin marketing page."""
import json
import logging
import os

from google import genai
from google.genai import errors, types
from pydantic import BaseModel, Field, ValidationError

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "gemini-2.5-flash"


class AIUnavailable(Exception):
    pass


class AnnouncementInput(BaseModel):
    topic: str = Field(..., min_length=1, description='Topic or existing text of the announcement, e.g. "a flash sale for the weekend"')


class AnnouncementOutput(BaseModel):
    announcement: str = Field(..., description="French banner message followed by 'Sango: ... - Lingala: ...'")


class PromoCopyInput(BaseModel):
    code: str = Field(..., min_length=1)
    discountPercentage: float = Field(..., gt=0, le=100)
    audience: str = Field("tous les apprenants")


class PromoCopyOutput(BaseModel):
    headline: str
    message: str


ANNOUNCEMENT_PROMPT = """
You are a marketing expert for FormaAfrique, an online learning platform for French-speaking Africa.
Your task is to take a given topic or an existing announcement text and rewrite it to be a short, engaging, and professional marketing message.
This message will be displayed in a banner on top of the website.
The tone should be exciting and create a sense of urgency or opportunity.
You MUST respond in French.

After crafting the main French message, you MUST also provide a creative, culturally relevant, and brief translation of the core message in Sango and Lingala.
Format the end of your response exactly like this:
"Sango: [Your Sango translation] - Lingala: [Your Lingala translation]"

Topic / Text to improve: {topic}
"""

PROMO_PROMPT = """
You are a marketing expert for FormaAfrique, an online learning platform for French-speaking Africa.
Write the copy announcing a promo code. Respond in French.
The headline must be at most 8 words. The message must be at most 2 sentences, mention the code exactly as given and the discount.

Code: {code}
Discount: {discountPercentage}%
Audience: {audience}
"""


class CopywritingClient:
    def __init__(self, api_key=None, model=None):
        api_key = api_key or os.environ.get('GEMINI_API_KEY')
        if not api_key: raise AIUnavailable("GEMINI_API_KEY is not configured.")
        self.client = genai.Client(api_key=api_key)
        self.model_id = model or os.environ.get('GEMINI_MODEL', DEFAULT_MODEL)

    def _generate(self, prompt, output_schema):
        try:
            response = self.client.models.generate_content(
                model=self.model_id, contents=prompt,
                config=types.GenerateContentConfig(response_mime_type='application/json', response_schema=output_schema),
            )
            if not response or not response.text: raise ValueError("Empty response from Gemini API.")
            return output_schema.model_validate(json.loads(response.text))
        except (errors.APIError, ValueError, ValidationError) as e:
            logger.exception("Gemini returned an unusable answer")
            raise AIUnavailable(str(e))

    def generate_announcement(self, topic):
        data = AnnouncementInput(topic=topic)
        return self._generate(ANNOUNCEMENT_PROMPT.format(topic=data.topic), AnnouncementOutput)

    def generate_promo_copy(self, code, discount_percentage, audience=None):
        data = PromoCopyInput(code=code, discountPercentage=discount_percentage, audience=audience or "tous les apprenants")
        return self._generate(PROMO_PROMPT.format(**data.model_dump()), PromoCopyOutput)
