"""
AI description of images.

An :class:`AnalysisAdapter` asks an ordered list of description providers
(hosted vision-language and captioning models) for free text and stops at the
first one that answers. The text is folded into six fixed fields by keyword
heuristics. When every provider fails, the same six fields are derived from
coarse labels sent by the client (for example a prior in-browser
classification pass) or, without labels, from the original filename.

The result always has every field populated plus a ``source`` entry naming
the path that produced it.
"""
import base64
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Protocol, Sequence

import requests

from . import config
from .errors import ProviderError
from .utils import read_image_properties

logger = logging.getLogger(__name__)

FIELDS = ("what_it_is", "main_colors", "background", "atmosphere", "impression", "style")

SOURCE_VISION = "vision_llm_parsed"
SOURCE_COMBINED = "enhanced_ai_combined_analysis"
SOURCE_FILENAME = "enhanced_intelligent_analysis"
SOURCE_FALLBACK = "fallback_analysis"

FIELD_DEFAULTS = {
    "what_it_is": "Visual subject with distinctive characteristics",
    "main_colors": "natural tones",
    "background": "indoor setting",
    "atmosphere": "neutral mood",
    "impression": "interesting visual composition",
    "style": "photography",
}

COLOR_WORDS = (
    'red', 'blue', 'green', 'yellow', 'orange', 'purple', 'pink', 'brown', 'black',
    'white', 'gray', 'grey', 'silver', 'gold', 'golden', 'dark', 'light', 'bright',
)
# Tag-side colour vocabulary; shades like "dark"/"light" are not colours of an object.
TAG_COLOR_WORDS = COLOR_WORDS[:14]


@dataclass
class AnalysisImage:
    """An image handed to the adapter, plus the hints the client sent with it."""

    path: str
    original_name: str = "unknown.jpg"
    mimetype: str = "image/jpeg"
    hint_tags: List[str] = field(default_factory=list)
    ocr_text: str = ""

    def read_bytes(self) -> bytes:
        with open(self.path, "rb") as f:
            return f.read()


class DescriptionProvider(Protocol):
    name: str

    def describe(self, image: AnalysisImage) -> str:
        """Returns free text describing the image or raises on any failure."""


# --- Remote providers ---

def hf_headers(content_type: str = "application/octet-stream", token: str = "") -> Dict[str, str]:
    headers = {"Content-Type": content_type}
    if token:
        headers["Authorization"] = f"Bearer {token}"
    return headers


def extract_generated_text(payload: Any) -> str:
    """Pulls ``generated_text`` out of the list-or-object shapes the inference API returns."""
    if isinstance(payload, list):
        payload = payload[0] if payload else {}
    if isinstance(payload, dict):
        text = payload.get("generated_text") or ""
        return text.strip() if isinstance(text, str) else ""
    return ""


class _HuggingFaceProvider:
    name = "huggingface"

    def __init__(self, model: str, timeout: float, token: str = None, base_url: str = None, http=None):
        self.model = model
        self.timeout = timeout
        self.token = config.HF_TOKEN if token is None else token
        self.base_url = (base_url or config.HF_INFERENCE_URL).rstrip("/")
        self.http = http or requests

    @property
    def url(self) -> str:
        return f"{self.base_url}/{self.model}"

    def _post(self, **kwargs) -> str:
        response = self.http.post(self.url, timeout=self.timeout, **kwargs)
        if not response.ok:
            raise ProviderError(f"{self.name} request failed with status {response.status_code}")
        text = extract_generated_text(response.json())
        if not text:
            raise ProviderError(f"{self.name} returned no text")
        return text


class QwenVisionProvider(_HuggingFaceProvider):
    """Chat-style vision-language model, image sent as a base64 data URL."""

    name = "qwen2-vl"
    prompt = "Describe the image succinctly."

    def __init__(self, model: str = config.QWEN_MODEL, timeout: float = config.QWEN_TIMEOUT, **kwargs):
        super().__init__(model, timeout, **kwargs)

    def describe(self, image: AnalysisImage) -> str:
        encoded = base64.b64encode(image.read_bytes()).decode("ascii")
        payload = {
            "inputs": [
                {
                    "role": "user",
                    "content": [
                        {"type": "image", "image": f"data:{image.mimetype};base64,{encoded}"},
                        {"type": "text", "text": self.prompt},
                    ],
                }
            ],
            "parameters": {"max_new_tokens": 200, "temperature": 0.1},
        }
        return self._post(json=payload, headers=hf_headers("application/json", self.token))


class CaptionProvider(_HuggingFaceProvider):
    """Image-captioning model fed the raw image bytes."""

    def __init__(self, model: str, timeout: float = 15, **kwargs):
        super().__init__(model, timeout, **kwargs)
        self.name = model.rsplit("/", 1)[-1]

    def describe(self, image: AnalysisImage) -> str:
        return self._post(data=image.read_bytes(), headers=hf_headers("application/octet-stream", self.token))


def default_providers() -> List[DescriptionProvider]:
    providers: List[DescriptionProvider] = [QwenVisionProvider()]
    providers.extend(CaptionProvider(model, timeout) for model, timeout in config.CAPTION_MODELS)
    return providers


# --- Free text to six fields ---

BACKGROUND_RULES = [
    (('outdoor', 'outside', 'street', 'road', 'park', 'garden'), 'outdoor environment'),
    (('room', 'kitchen', 'bedroom', 'office'), 'indoor room setting'),
    (('studio', 'plain', 'background'), 'studio or neutral background'),
]
ATMOSPHERE_RULES = [
    (('bright', 'sunny', 'cheerful'), 'bright and cheerful'),
    (('dark', 'moody', 'dramatic'), 'dramatic and moody'),
    (('calm', 'peaceful', 'serene'), 'calm and peaceful'),
    (('busy', 'crowded', 'active'), 'busy and dynamic'),
]
IMPRESSION_RULES = [
    (('beautiful', 'stunning', 'gorgeous'), 'aesthetically pleasing and beautiful'),
    (('cute', 'adorable', 'sweet'), 'charming and endearing'),
    (('professional', 'formal', 'business'), 'professional and polished'),
    (('artistic', 'creative', 'unique'), 'artistic and creative expression'),
]
STYLE_RULES = [
    (('portrait', 'person', 'face'), 'portrait photography'),
    (('landscape', 'scenery', 'nature'), 'landscape photography'),
    (('close', 'macro', 'detail'), 'close-up or macro photography'),
    (('street', 'urban', 'city'), 'street or urban photography'),
    (('food', 'meal', 'dish'), 'food photography'),
]

_LEADING_ARTICLE = re.compile(r'^\s*(?:an?|the)\s+', re.IGNORECASE)


def _first_rule(text: str, rules, default: str) -> str:
    for keywords, value in rules:
        if any(k in text for k in keywords):
            return value
    return default


def parse_description_to_structured(description: str, hint_tags: Sequence[str] = ()) -> Dict[str, str]:
    """
    Maps a model's free-text description onto the six analysis fields.

    Colours are collected from substrings of the description and from ``hint_tags``
    (at most three, description first). The other fields are picked by the
    first matching keyword group; no match leaves the field's default.
    """
    text = (description or "").strip()
    lower = text.lower()

    what_it_is = _LEADING_ARTICLE.sub('', text, count=1).strip() or FIELD_DEFAULTS["what_it_is"]

    colors = [c for c in COLOR_WORDS if c in lower]
    for tag in hint_tags:
        tag = tag.strip().lower()
        if tag in COLOR_WORDS and tag not in colors:
            colors.append(tag)

    return {
        "what_it_is": what_it_is,
        "main_colors": ', '.join(colors[:3]) if colors else FIELD_DEFAULTS["main_colors"],
        "background": _first_rule(lower, BACKGROUND_RULES, FIELD_DEFAULTS["background"]),
        "atmosphere": _first_rule(lower, ATMOSPHERE_RULES, FIELD_DEFAULTS["atmosphere"]),
        "impression": _first_rule(lower, IMPRESSION_RULES, FIELD_DEFAULTS["impression"]),
        "style": _first_rule(lower, STYLE_RULES, FIELD_DEFAULTS["style"]),
        "source": SOURCE_VISION,
    }


# --- Filename patterns ---

FILENAME_PATTERNS = [
    (('car', 'auto', 'vehicle', 'truck', 'motorcycle', 'bike', 'scooter', 'wheel'), {
        "what_it_is": 'Motor vehicle or transportation device',
        "main_colors": 'Metallic blues, reds, or silver with chrome accents',
        "background": 'Urban street, parking area, or automotive showroom',
        "atmosphere": 'Dynamic energy with mechanical precision',
        "impression": 'Modern transportation and engineering excellence',
        "style": 'Automotive or transportation photography',
    }),
    (('cat', 'dog', 'pet', 'animal', 'puppy', 'kitten', 'bird', 'horse'), {
        "what_it_is": 'Domestic animal or wildlife creature',
        "main_colors": 'Natural fur tones - browns, blacks, whites, and golden hues',
        "background": 'Comfortable home environment or natural outdoor habitat',
        "atmosphere": 'Warm, affectionate, and full of life',
        "impression": 'Emotional connection and natural beauty of animal companionship',
        "style": 'Pet portrait or wildlife photography',
    }),
    (('food', 'meal', 'dish', 'cook', 'eat', 'restaurant', 'kitchen', 'recipe'), {
        "what_it_is": 'Culinary creation or food presentation',
        "main_colors": 'Appetizing golds, rich reds, fresh greens, and warm browns',
        "background": 'Professional kitchen, elegant dining setting, or rustic table',
        "atmosphere": 'Inviting warmth with mouth-watering appeal',
        "impression": 'Gastronomic artistry that celebrates culinary craftsmanship',
        "style": 'Professional food photography or culinary documentation',
    }),
    (('landscape', 'nature', 'mountain', 'forest', 'beach', 'sunset', 'tree', 'flower'), {
        "what_it_is": 'Natural landscape or botanical subject',
        "main_colors": 'Earth tones with vibrant greens, sky blues, and sunset oranges',
        "background": 'Pristine natural environment with organic elements',
        "atmosphere": 'Serene tranquility with breathtaking natural beauty',
        "impression": 'Deep connection to nature and environmental appreciation',
        "style": 'Landscape or nature photography',
    }),
    (('portrait', 'person', 'face', 'people', 'human', 'man', 'woman', 'child'), {
        "what_it_is": 'Human subject or portrait study',
        "main_colors": 'Natural skin tones complemented by clothing and environmental colors',
        "background": 'Professional studio setup or carefully chosen environmental context',
        "atmosphere": 'Intimate and expressive with emotional depth',
        "impression": 'Captures human character, emotion, and individual personality',
        "style": 'Portrait photography or human documentary',
    }),
    (('building', 'architecture', 'house', 'city', 'urban', 'street', 'bridge'), {
        "what_it_is": 'Architectural structure or urban environment',
        "main_colors": 'Concrete grays, brick reds, glass blues, and steel metallics',
        "background": 'Urban cityscape or architectural setting',
        "atmosphere": 'Modern sophistication with geometric precision',
        "impression": 'Human achievement in design and urban development',
        "style": 'Architectural or urban photography',
    }),
    (('art', 'painting', 'drawing', 'sculpture', 'gallery', 'museum', 'creative'), {
        "what_it_is": 'Artistic creation or cultural artifact',
        "main_colors": 'Rich artistic palette with expressive color combinations',
        "background": 'Gallery space, studio environment, or cultural institution',
        "atmosphere": 'Creative inspiration with artistic sophistication',
        "impression": 'Cultural expression and human creativity',
        "style": 'Art documentation or cultural photography',
    }),
]

HIGH_RES_BYTES = 1000 * 1024
WEB_SIZE_BYTES = 100 * 1024
HIGH_RES_PIXELS = 12_000_000


def generate_filename_analysis(filename: str, properties: Optional[Dict[str, Any]] = None) -> Optional[Dict[str, str]]:
    """
    Guesses the six fields from keywords in the filename, refined by the file's
    size when known. Returns None when no pattern matches.
    """
    name = (filename or "").lower()
    for keywords, template in FILENAME_PATTERNS:
        if not any(k in name for k in keywords):
            continue
        analysis = dict(template)
        if properties:
            size = properties.get("size_bytes") or 0
            pixels = (properties.get("width") or 0) * (properties.get("height") or 0)
            if size > HIGH_RES_BYTES or pixels >= HIGH_RES_PIXELS:
                analysis["style"] += ' with high-resolution detail'
                analysis["impression"] += ' captured with professional quality'
            elif 0 < size < WEB_SIZE_BYTES:
                analysis["style"] += ' optimized for web presentation'
        analysis["source"] = SOURCE_FILENAME
        return analysis
    return None


# --- Coarse labels to six fields ---

# (category, trigger labels, [(labels, description)], description when no specific label matches)
CATEGORY_RULES = [
    ('portrait', ('person', 'man', 'woman', 'child', 'people'), [
        (('child', 'baby'), 'Child or young person in portrait setting'),
        (('man',), 'Male subject in professional or casual portrait'),
        (('woman',), 'Female subject captured in portrait composition'),
    ], 'Human subject in thoughtful portrait arrangement'),
    ('automotive', ('car', 'vehicle', 'truck', 'motorcycle', 'scooter'), [
        (('car',), 'Automobile showcasing automotive design and engineering'),
        (('motorcycle', 'scooter'), 'Two-wheeled motor vehicle with dynamic presence'),
        (('truck',), 'Commercial or utility vehicle with robust construction'),
    ], 'Transportation vehicle demonstrating mechanical craftsmanship'),
    ('animal', ('cat', 'dog', 'animal', 'bird', 'pet'), [
        (('cat',), 'Feline companion displaying natural grace and character'),
        (('dog',), 'Canine friend showing loyalty and spirited personality'),
        (('bird',), 'Avian creature captured in natural or domestic setting'),
    ], 'Animal subject expressing natural behavior and beauty'),
    ('food', ('food', 'meal', 'dish', 'cooking'), [
        (('meal',), 'Carefully prepared meal showcasing culinary artistry'),
        (('dish',), 'Gourmet dish presented with professional plating technique'),
    ], 'Culinary creation highlighting gastronomic excellence'),
    ('architecture', ('building', 'house', 'architecture', 'structure'), [
        (('house',), 'Residential architecture displaying design and livability'),
        (('building',), 'Architectural structure demonstrating construction and form'),
    ], 'Built environment showcasing human design achievement'),
    ('nature', ('flower', 'tree', 'plant', 'nature', 'landscape'), [
        (('flower',), 'Botanical bloom displaying natural beauty and delicate form'),
        (('tree',), 'Majestic tree representing growth and natural strength'),
        (('landscape',), 'Natural landscape showcasing environmental beauty'),
    ], 'Natural element celebrating organic beauty and life'),
    ('document', ('book', 'text', 'document'), [],
     'Literary or informational content with textual elements'),
    ('art', ('art', 'painting', 'drawing'), [],
     'Artistic creation expressing creative vision and technique'),
    ('tool', ('tool', 'equipment', 'machine'), [],
     'Functional tool or equipment designed for specific purpose'),
]

# Checked only when no label matched a category.
FILENAME_HINTS = [
    ('portrait', ('portrait', 'selfie', 'photo'), 'Photographic composition with human or personal elements'),
    ('nature', ('landscape', 'scenic'), 'Scenic composition capturing environmental beauty'),
    ('product', ('product', 'item'), 'Product or object presented for documentation or display'),
]

# Per category: (colours template, colour joiner, colours default,
#                background template, background default, atmosphere, impression, style).
# {colors} is the joined colour labels, {bg}/{Bg} the first "... background" label without the suffix.
CATEGORY_STYLES = {
    'portrait': (
        'Natural skin tones with {colors} accents', ', ',
        'Natural skin tones with complementary color palette',
        'Professional {bg} backdrop', 'Carefully composed portrait setting',
        'Intimate and expressive with emotional depth',
        'Captures human character and individual personality',
        'Professional portrait photography',
    ),
    'automotive': (
        'Automotive {colors} with metallic finishes', ' and ',
        'Metallic automotive colors with chrome accents',
        '{Bg} automotive environment', 'Urban or automotive setting',
        'Dynamic energy with mechanical precision',
        'Modern transportation and engineering excellence',
        'Automotive photography',
    ),
    'animal': (
        'Natural {colors} fur or feather tones', ' and ',
        'Natural animal coloring with organic tones',
        '{Bg} natural environment', 'Natural habitat or comfortable setting',
        'Warm, lively, and full of natural energy',
        'Natural beauty and animal character',
        'Wildlife or pet photography',
    ),
    'food': (
        'Appetizing {colors} with rich culinary tones', ', ',
        'Rich culinary colors with appetizing presentation',
        '{Bg} culinary setting', 'Professional kitchen or dining presentation',
        'Inviting warmth with mouth-watering appeal',
        'Gastronomic artistry and culinary craftsmanship',
        'Professional food photography',
    ),
    'architecture': (
        'Architectural {colors} with structural elements', ' and ',
        'Architectural materials with structural color palette',
        '{Bg} urban context', 'Urban or architectural environment',
        'Modern sophistication with geometric precision',
        'Human achievement in design and construction',
        'Architectural photography',
    ),
    'nature': (
        'Natural {colors} with organic earth tones', ' and ',
        'Natural earth tones with organic color harmony',
        '{Bg} natural setting', 'Natural outdoor environment',
        'Serene tranquility with natural beauty',
        'Connection to nature and environmental harmony',
        'Nature or landscape photography',
    ),
    'document': (
        'Text-focused {colors} with readable contrast', ' and ',
        'High contrast colors optimized for readability',
        'Clean {bg} document layout', 'Professional document presentation background',
        'Informative and organized with clear communication intent',
        'Educational or informational content with structured presentation',
        'Document or informational photography',
    ),
    'art': (
        'Artistic {colors} expressing creative vision', ', ',
        'Rich artistic palette with expressive color relationships',
        'Gallery-quality {bg} presentation', 'Museum or studio setting for artistic display',
        'Creative inspiration with artistic sophistication and depth',
        'Cultural expression demonstrating human creativity and skill',
        'Fine art or creative documentation photography',
    ),
    'tool': (
        'Functional {colors} emphasizing utility', ' and ',
        'Practical colors highlighting functional design',
        'Workshop or {bg} working environment', 'Professional workspace or technical setting',
        'Purposeful and efficient with focus on functionality',
        'Human ingenuity in tool design and practical application',
        'Technical or product documentation photography',
    ),
    'product': (
        'Commercial {colors} designed for market appeal', ', ',
        'Market-focused colors with commercial appeal',
        'Professional {bg} product showcase', 'Studio lighting optimized for product presentation',
        'Polished and appealing with commercial sophistication',
        'Consumer appeal with emphasis on quality and desirability',
        'Commercial product photography',
    ),
    'general': (
        'Distinctive {colors} creating visual impact', ', ',
        'Carefully selected color palette with intentional composition',
        'Purposeful {bg} environmental context', 'Thoughtfully arranged compositional environment',
        'Engaging visual presence with deliberate artistic choices',
        'Unique visual narrative demonstrating photographic skill',
        'Contemporary photography with professional composition',
    ),
}


def normalize_labels(labels: Iterable[str]) -> List[str]:
    return [l.strip().lower() for l in labels if isinstance(l, str) and l.strip()]


def classify_labels(filename: str, labels: Sequence[str]):
    """Returns ``(category, what_it_is)``. Categories are tried in a fixed order, first match wins."""
    tags = set(labels)
    for category, triggers, specifics, default in CATEGORY_RULES:
        if not tags.intersection(triggers):
            continue
        for specific, description in specifics:
            if tags.intersection(specific):
                return category, description
        return category, default

    name = (filename or "").lower()
    for category, keywords, description in FILENAME_HINTS:
        if any(k in name for k in keywords):
            return category, description

    if labels:
        meaningful = [t for t in labels if 'background' not in t and t not in TAG_COLOR_WORDS]
        if meaningful:
            subject = meaningful[0]
            return 'general', f"{subject[:1].upper()}{subject[1:]} captured with professional attention to detail and composition"
        return 'general', f"Visual composition featuring {' and '.join(labels[:2])} elements"
    return 'general', 'Distinctive visual subject with unique characteristics and composition'


def generate_combined_analysis(filename: str, labels: Sequence[str] = (), source: str = SOURCE_COMBINED) -> Dict[str, str]:
    """Derives the six fields from coarse classifier labels, using the filename when labels do not decide."""
    tags = normalize_labels(labels)
    category, what_it_is = classify_labels(filename, tags)

    colors = [t for t in tags if t in TAG_COLOR_WORDS]
    backgrounds = [t for t in tags if 'background' in t]
    (colors_tpl, joiner, colors_default, bg_tpl, bg_default,
     atmosphere, impression, style) = CATEGORY_STYLES[category]

    if backgrounds:
        bg = backgrounds[0].replace(' background', '').strip()
        background = bg_tpl.format(bg=bg, Bg=f"{bg[:1].upper()}{bg[1:]}")
    else:
        background = bg_default

    return {
        "what_it_is": what_it_is,
        "main_colors": colors_tpl.format(colors=joiner.join(colors)) if colors else colors_default,
        "background": background,
        "atmosphere": atmosphere,
        "impression": impression,
        "style": style,
        "source": source,
    }


def complete_analysis(analysis: Dict[str, str]) -> Dict[str, str]:
    """Fills any missing or blank field with its default."""
    for name in FIELDS:
        value = analysis.get(name)
        if not isinstance(value, str) or not value.strip():
            analysis[name] = FIELD_DEFAULTS[name]
    analysis.setdefault("source", SOURCE_FALLBACK)
    return analysis


class AnalysisAdapter:
    """Runs the provider chain and the heuristic fallbacks for one image at a time."""

    def __init__(self, providers: Optional[Sequence[DescriptionProvider]] = None):
        self.providers = list(default_providers() if providers is None else providers)

    def describe(self, image: AnalysisImage):
        """Returns ``(text, failures)``; text is None when every provider failed."""
        failures = []
        for provider in self.providers:
            logger.info("Trying %s...", provider.name)
            try:
                text = provider.describe(image)
            except Exception as e:
                # Any provider failure is soft; the next provider gets its turn.
                failures.append((provider.name, str(e)))
                logger.warning("%s failed: %s", provider.name, e, exc_info=True)
                continue
            if text and text.strip():
                logger.info("%s analysis successful: %s", provider.name, text)
                return text, failures
            failures.append((provider.name, "empty description"))
        return None, failures

    def heuristic_analysis(self, image: AnalysisImage) -> Dict[str, str]:
        labels = normalize_labels(image.hint_tags)
        if not labels:
            analysis = generate_filename_analysis(image.original_name, read_image_properties(image.path))
            if analysis:
                return analysis
        return generate_combined_analysis(image.original_name, labels)

    def analyze(self, image: AnalysisImage) -> Dict[str, str]:
        logger.info("Analyzing '%s' with hint tags %s", image.original_name, image.hint_tags)
        if image.ocr_text:
            logger.info("OCR text received (first 80 chars): %s", image.ocr_text[:80])
        try:
            text, failures = self.describe(image)
            if text is not None:
                return complete_analysis(parse_description_to_structured(text, image.hint_tags))
            logger.info("Vision providers failed (%s), using heuristic analysis.",
                        ", ".join(name for name, _ in failures) or "none configured")
            return complete_analysis(self.heuristic_analysis(image))
        except Exception:
            # Callers always get a full result; the worst case is the general fallback.
            logger.exception("Analysis of '%s' failed, returning fallback analysis.", image.original_name)
            return complete_analysis(
                generate_combined_analysis("unknown.jpg", image.hint_tags, source=SOURCE_FALLBACK)
            )
