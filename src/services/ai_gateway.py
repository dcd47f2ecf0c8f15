import os
import re
import json
import logging
import requests
from flask import current_app

from src.services.sequence_engine.errors import GenerationFailure

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = 'https://api.novita.ai/openai'
DEFAULT_MODEL = 'meta-llama/llama-3.3-70b-instruct'

SYSTEM_PROMPT = """You are a world-class sales development assistant trained on the "Show Me You Know Me" (SMYKM) outreach methodology.

Core principles:
1. PERSONALIZATION FIRST: Every message must reference something specific about the prospect: their role, company, recent achievements, industry challenges, or interests. Generic = deleted.
2. LEAD WITH THEM: The first sentence is ALWAYS about the prospect, never about you.
3. CONNECT THE DOTS: Bridge from their world to your value. Show how what you offer solves their specific problem.
4. BE HUMAN: Write like a real person, not a template. No "I hope this email finds you well." No corporate jargon.
5. ONE CTA: Each message has exactly one clear, low-friction call to action.
6. BREVITY: Under 100 words for email body. Under 300 characters for social messages.

For multi-step sequences, each step should build on the last:
- Step 1: Show you know them + introduce relevance
- Step 2: Share a specific insight or case study relevant to their industry
- Step 3: Social proof or a question that provokes thought
- Step 4: Direct value offer or meeting request
- Step 5: Graceful breakup that leaves the door open

Adapt tone by channel:
- Email: Professional but warm. Subject lines under 6 words.
- Social: Conversational, slightly more casual.
- Call: Provide a brief script with an opening hook and 2-3 talking points.
- Task: Describe the action and personalization approach.

ALWAYS respond in valid JSON. No markdown, no explanations outside the JSON."""

# Expected JSON shape per channel
RESPONSE_FORMATS = {
    'email': '{"subject": "short subject", "body": "email body under 100 words"}',
    'social': '{"message": "social message under 300 characters"}',
    'call': '{"opening": "first 10 seconds", "talking_points": ["point 1", "point 2"], "cta": "close with this"}',
    'task': '{"task_description": "what to do", "personalization_notes": "how to personalize this touch"}',
}

REQUIRED_FIELDS = {
    'email': ('subject', 'body'),
    'social': ('message',),
    'call': ('opening', 'talking_points', 'cta'),
    'task': ('task_description',),
}

CODE_FENCE = re.compile(r'^```(?:json)?\s*|\s*```$')


class AIGatewayClient:
    """Client for the OpenAI-compatible chat completions API used for step personalization."""

    def __init__(self, api_key=None, base_url=None, model=None, timeout=None):
        """Initialize the AI gateway client."""
        self.api_key = api_key or self._get_setting('AI_API_KEY')
        self.base_url = (base_url or self._get_setting('AI_API_BASE_URL', DEFAULT_BASE_URL)).rstrip('/')
        self.model = model or self._get_setting('AI_MODEL', DEFAULT_MODEL)
        self.timeout = timeout or int(self._get_setting('AI_TIMEOUT_SECONDS', 30))
        self.max_tokens = 500
        self.temperature = 0.7

        if not self.api_key:
            logger.warning("No AI API key provided")

    def _get_setting(self, key, default=None):
        """Get a setting from environment or Flask config."""
        value = os.environ.get(key)
        if value:
            return value

        try:
            if current_app:
                return current_app.config.get(key, default) or default
        except RuntimeError:
            # No application context
            pass

        return default

    def _make_request(self, payload):
        """POST a chat completion request and return the decoded response."""
        if not self.api_key:
            raise GenerationFailure("No AI API key available")

        url = f"{self.base_url}/chat/completions"
        headers = {
            'Authorization': f"Bearer {self.api_key}",
            'Content-Type': 'application/json',
        }

        try:
            response = requests.post(url, json=payload, headers=headers, timeout=self.timeout)
            response.raise_for_status()
            return response.json()
        except requests.exceptions.RequestException as e:
            logger.error(f"AI gateway request failed: {str(e)}")
            details = {}
            if hasattr(e, 'response') and e.response is not None:
                logger.error(f"Response status: {e.response.status_code}")
                logger.error(f"Response body: {e.response.text}")
                details = {'status_code': e.response.status_code}
            raise GenerationFailure(f"AI gateway request failed: {str(e)}", details)
        except ValueError as e:
            raise GenerationFailure(f"AI gateway returned invalid JSON: {str(e)}")

    def complete(self, system_prompt, user_prompt):
        """Run one chat completion and return the message text."""
        data = self._make_request({
            'model': self.model,
            'messages': [
                {'role': 'system', 'content': system_prompt},
                {'role': 'user', 'content': user_prompt},
            ],
            'max_tokens': self.max_tokens,
            'temperature': self.temperature,
        })

        try:
            return data['choices'][0]['message']['content'] or ''
        except (KeyError, IndexError, TypeError):
            raise GenerationFailure("AI gateway response has no completion", {'response': data})

    def build_prompt(self, contact, step, sequence_context=None):
        """Build the user prompt for one step of a sequence."""
        sequence_context = sequence_context or {}
        total_steps = sequence_context.get('total_steps') or '?'
        channel = step.get('channel')

        lines = [
            f"Generate personalized outreach for step {step.get('step_number')} of a {total_steps}-step sequence"
            + (f" called \"{sequence_context['name']}\"." if sequence_context.get('name') else "."),
            "",
            "PROSPECT:",
            f"- Name: {contact.get('first_name') or ''} {contact.get('last_name') or ''}".rstrip(),
            f"- Title: {contact.get('title') or 'Unknown'}",
            f"- Company: {contact.get('company_name') or 'Unknown'}",
            f"- Industry: {contact.get('industry') or 'Unknown'}",
            f"- Notes/Context: {contact.get('notes') or 'None'}",
            "",
            "STEP CONFIG:",
            f"- Channel: {channel}",
            f"- Step {step.get('step_number')} of {total_steps}",
        ]
        if step.get('subject_template'):
            lines.append(f"- Subject template hint: {step['subject_template']}")
        if step.get('body_template'):
            lines.append(f"- Body template hint: {step['body_template']}")
        if step.get('ai_prompt'):
            lines.append(f"- Custom instruction: {step['ai_prompt']}")
        lines.extend(["", "Respond in JSON:", RESPONSE_FORMATS.get(channel, RESPONSE_FORMATS['task'])])
        return "\n".join(lines)

    def parse_response(self, text, channel):
        """Parse the model's JSON answer and check the channel's required fields."""
        cleaned = CODE_FENCE.sub('', (text or '').strip())
        try:
            parsed = json.loads(cleaned)
        except ValueError:
            raise GenerationFailure("AI response is not valid JSON", {'raw': text})

        if not isinstance(parsed, dict):
            raise GenerationFailure("AI response is not a JSON object", {'raw': text})

        missing = [field for field in REQUIRED_FIELDS.get(channel, ()) if not parsed.get(field)]
        if missing:
            raise GenerationFailure(
                f"AI response is missing required fields: {', '.join(missing)}",
                {'missing': missing, 'raw': text}
            )
        return parsed

    def normalize(self, parsed, channel):
        """Map channel-specific fields onto subject/body, keeping the raw fields."""
        content = dict(parsed)
        if channel == 'email':
            content['subject'] = parsed['subject']
            content['body'] = parsed['body']
        elif channel == 'social':
            content['subject'] = None
            content['body'] = parsed['message']
        elif channel == 'call':
            points = parsed['talking_points']
            if isinstance(points, str):
                points = [points]
            body = [parsed['opening'], ""]
            body.extend(f"- {point}" for point in points)
            body.extend(["", parsed['cta']])
            content['subject'] = None
            content['body'] = "\n".join(body)
        else:
            body = parsed['task_description']
            if parsed.get('personalization_notes'):
                body = f"{body}\n\n{parsed['personalization_notes']}"
            content['subject'] = None
            content['body'] = body
        content['channel'] = channel
        return content

    def generate_step_content(self, contact, step, sequence_context=None):
        """Generate personalized content for one step.

        Returns a dict with ``subject`` and ``body`` plus the channel's raw
        fields. Raises GenerationFailure on any gateway or parsing problem.
        """
        channel = step.get('channel')
        prompt = self.build_prompt(contact, step, sequence_context)
        text = self.complete(SYSTEM_PROMPT, prompt)
        content = self.normalize(self.parse_response(text, channel), channel)
        logger.info(f"Generated {channel} content for step {step.get('step_number')}")
        return content
