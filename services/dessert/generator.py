# services/dessert/generator.py
"""External AI generation of dessert recipes and images"""

import asyncio
import logging
import random
from typing import Optional

import httpx
from pydantic import ValidationError

from shared.json_utils import extract_json_object
from shared.llm_client import LLMClient, LLMError

from services.dessert.config import GENERATION_TIMEOUT_SECONDS, OPENAI_API_KEY
from services.dessert.errors import UpstreamGenerationError, UpstreamRateLimitError
from services.dessert.models import GeneratedDessert, Language, Theme

logger = logging.getLogger(__name__)

OPENAI_IMAGES_URL = "https://api.openai.com/v1/images/generations"
IMAGE_MODEL = "dall-e-3"
IMAGE_SIZE = "1024x1024"

RECIPE_PARAMETERS = {"max_tokens": 800, "temperature": 0.9, "top_p": 0.95}

JSON_SHAPE = (
    '{"name": "...", "ingredients": ["...", "...", "..."], "steps": ["...", "...", "..."]}'
)

# Per-language prompt pieces: (intro, masculine theme, feminine theme, rules, reply instruction)
RECIPE_PROMPTS = {
    Language.PT: (
        "Crie uma sobremesa infantil mágica usando os ingredientes: {ingredients}.",
        "- Use tema de super-heróis e poderes",
        "- Use tema de doces fofos e mágicos",
        "- Gere nome criativo baseado em doce real\n"
        "- Receita curta em 3 passos simples\n"
        "- Linguagem divertida para crianças",
        "Responda APENAS no formato JSON válido (sem markdown):",
    ),
    Language.EN: (
        "Create a magical kids dessert using the ingredients: {ingredients}.",
        "- Use a superhero and powers theme",
        "- Use a cute and magical sweets theme",
        "- Generate a creative name based on a real dessert\n"
        "- Short recipe in 3 simple steps\n"
        "- Fun language for kids",
        "Reply ONLY in valid JSON format (no markdown):",
    ),
    Language.ES: (
        "Crea un postre infantil mágico usando los ingredientes: {ingredients}.",
        "- Usa tema de superhéroes y poderes",
        "- Usa tema de dulces tiernos y mágicos",
        "- Genera un nombre creativo basado en un postre real\n"
        "- Receta corta en 3 pasos simples\n"
        "- Lenguaje divertido para niños",
        "Responde SOLO en formato JSON válido (sin markdown):",
    ),
    Language.FR: (
        "Crée un dessert magique pour enfants avec les ingrédients : {ingredients}.",
        "- Thème super-héros et pouvoirs",
        "- Thème de douceurs mignonnes et magiques",
        "- Invente un nom créatif inspiré d'un vrai dessert\n"
        "- Recette courte en 3 étapes simples\n"
        "- Langage amusant pour les enfants",
        "Réponds UNIQUEMENT en JSON valide (sans markdown) :",
    ),
    Language.DE: (
        "Erstelle ein magisches Kinderdessert mit den Zutaten: {ingredients}.",
        "- Superhelden- und Kräfte-Thema",
        "- Süßes, niedliches, magisches Thema",
        "- Erfinde einen kreativen Namen basierend auf einem echten Dessert\n"
        "- Kurzes Rezept in 3 einfachen Schritten\n"
        "- Kindgerechte, lustige Sprache",
        "Antworte NUR im gültigen JSON-Format (ohne Markdown):",
    ),
    Language.JA: (
        "次の材料を使って、子ども向けの魔法のデザートを作ってください: {ingredients}。",
        "- スーパーヒーローとパワーのテーマ",
        "- かわいくて魔法のようなお菓子のテーマ",
        "- 実在のデザートをもとにした楽しい名前\n"
        "- 3つの簡単なステップの短いレシピ\n"
        "- 子どもが楽しめる言葉づかい",
        "有効なJSON形式のみで答えてください（markdownなし）:",
    ),
}

MOCK_RECIPES = {
    Language.PT: {
        Theme.FEMININE: {
            "name": "Brigadeiro Encantado das Fadas",
            "ingredients": ["Leite condensado", "Chocolate em pó", "Manteiga", "Granulado colorido"],
            "steps": [
                "Misture o leite condensado com o chocolate e a manteiga em uma panela mágica",
                "Mexa sem parar até desgrudar do fundo (peça ajuda a um adulto!)",
                "Espere esfriar, faça bolinhas e cubra com granulado colorido",
            ],
        },
        Theme.MASCULINE: {
            "name": "Brownie do Poder Supremo",
            "ingredients": ["Chocolate", "Manteiga", "Ovos", "Açúcar", "Farinha"],
            "steps": [
                "Derreta o chocolate com a manteiga como um super-herói derrete vilões!",
                "Misture os ovos e o açúcar com força total",
                "Adicione a farinha e asse para ganhar poderes!",
            ],
        },
    },
    Language.EN: {
        Theme.FEMININE: {
            "name": "Enchanted Fairy Truffle",
            "ingredients": ["Condensed milk", "Cocoa powder", "Butter", "Rainbow sprinkles"],
            "steps": [
                "Mix condensed milk with cocoa and butter in a magic pot",
                "Stir until the mixture pulls away from the bottom (ask an adult for help!)",
                "Let it cool, roll little balls and cover them with rainbow sprinkles",
            ],
        },
        Theme.MASCULINE: {
            "name": "Supreme Power Brownie",
            "ingredients": ["Chocolate", "Butter", "Eggs", "Sugar", "Flour"],
            "steps": [
                "Melt chocolate and butter like a superhero melts villains!",
                "Mix eggs and sugar with full power",
                "Add flour and bake to gain powers!",
            ],
        },
    },
    Language.ES: {
        Theme.FEMININE: {
            "name": "Trufa Encantada de Hadas",
            "ingredients": ["Leche condensada", "Cacao en polvo", "Mantequilla", "Sprinkles de colores"],
            "steps": [
                "Mezcla la leche condensada con el cacao y la mantequilla en una olla mágica",
                "Revuelve hasta que se despegue del fondo (¡pide ayuda a un adulto!)",
                "Deja enfriar, haz bolitas y cúbrelas con sprinkles",
            ],
        },
        Theme.MASCULINE: {
            "name": "Brownie del Poder Supremo",
            "ingredients": ["Chocolate", "Mantequilla", "Huevos", "Azúcar", "Harina"],
            "steps": [
                "Derrite el chocolate con la mantequilla como un superhéroe",
                "Mezcla los huevos y el azúcar con toda tu energía",
                "Agrega la harina y hornea para ganar poderes",
            ],
        },
    },
    Language.FR: {
        Theme.FEMININE: {
            "name": "Truffe Féerique Enchantée",
            "ingredients": ["Lait concentré", "Cacao en poudre", "Beurre", "Vermicelles colorés"],
            "steps": [
                "Mélange le lait concentré, le cacao et le beurre dans une casserole magique",
                "Remue jusqu'à ce que ça se décolle du fond (demande l'aide d'un adulte !)",
                "Laisse refroidir, forme des boules et roule-les dans les vermicelles",
            ],
        },
        Theme.MASCULINE: {
            "name": "Brownie du Pouvoir Suprême",
            "ingredients": ["Chocolat", "Beurre", "Œufs", "Sucre", "Farine"],
            "steps": [
                "Fais fondre le chocolat et le beurre comme un super-héros",
                "Mélange les œufs et le sucre avec toute ta force",
                "Ajoute la farine et fais cuire pour gagner des pouvoirs",
            ],
        },
    },
    Language.DE: {
        Theme.FEMININE: {
            "name": "Zauberhafte Feen-Trüffel",
            "ingredients": ["Kondensmilch", "Kakaopulver", "Butter", "Bunte Streusel"],
            "steps": [
                "Vermische Kondensmilch, Kakao und Butter im magischen Topf",
                "Rühre, bis sich die Masse vom Boden löst (frag einen Erwachsenen um Hilfe!)",
                "Abkühlen lassen, kleine Kugeln formen und in Streuseln wälzen",
            ],
        },
        Theme.MASCULINE: {
            "name": "Ultimativer Power-Brownie",
            "ingredients": ["Schokolade", "Butter", "Eier", "Zucker", "Mehl"],
            "steps": [
                "Schmelze Schokolade und Butter wie ein Superheld",
                "Verrühre Eier und Zucker mit voller Kraft",
                "Mehl dazugeben und backen, um Kräfte zu gewinnen",
            ],
        },
    },
    Language.JA: {
        Theme.FEMININE: {
            "name": "妖精のまほうトリュフ",
            "ingredients": ["練乳", "ココアパウダー", "バター", "カラースプレー"],
            "steps": [
                "練乳とココアとバターをまほうのおなべでまぜよう",
                "なべの底からはなれるまでまぜよう（おとなに手伝ってもらってね！）",
                "さましたら丸めて、カラースプレーをまぶそう",
            ],
        },
        Theme.MASCULINE: {
            "name": "スーパーパワーブラウニー",
            "ingredients": ["チョコレート", "バター", "たまご", "さとう", "小麦粉"],
            "steps": [
                "ヒーローのようにチョコレートとバターをとかそう！",
                "たまごとさとうをフルパワーでまぜよう",
                "小麦粉を入れて焼いたらパワーアップ！",
            ],
        },
    },
}

PLACEHOLDER_IMAGES = {
    Theme.FEMININE: [
        "https://images.unsplash.com/photo-1551024506-0bccd828d307?w=1024&h=1024&fit=crop",
        "https://images.unsplash.com/photo-1587668178277-295251f900ce?w=1024&h=1024&fit=crop",
        "https://images.unsplash.com/photo-1464349095431-e9a21285b5f3?w=1024&h=1024&fit=crop",
    ],
    Theme.MASCULINE: [
        "https://images.unsplash.com/photo-1606313564200-e75d5e30476c?w=1024&h=1024&fit=crop",
        "https://images.unsplash.com/photo-1578985545062-69928b1d9587?w=1024&h=1024&fit=crop",
        "https://images.unsplash.com/photo-1563729784474-d77dbb933a9e?w=1024&h=1024&fit=crop",
    ],
}


def build_recipe_prompt(ingredients: str, theme: Theme, language: Language) -> str:
    intro, masculine, feminine, rules, reply = RECIPE_PROMPTS.get(
        language, RECIPE_PROMPTS[Language.EN]
    )
    theme_line = masculine if theme == Theme.MASCULINE else feminine
    return (
        f"{intro.format(ingredients=ingredients)}\n{theme_line}\n{rules}\n\n{reply}\n{JSON_SHAPE}"
    )


def build_image_prompt(name: str, theme: Theme) -> str:
    if theme == Theme.MASCULINE:
        style = "Superhero style, dynamic pose, action hero vibe."
        background = "Epic cosmic background with stars and energy."
    else:
        style = "Disney-Pixar cinematic style."
        background = "Candy magical background."

    return (
        f'Create a charming 3D character inspired by "{name}".\n'
        "Dessert-shaped body with ingredients integrated.\n"
        f"{style}\n"
        "Big joyful eyes, playful pose.\n"
        f"{background}\n"
        "High quality 3D render, vibrant colors, studio lighting, no text."
    )


class DessertGenerator:
    """
    Generates a dessert recipe with the LLM client and an illustration with
    the OpenAI images API.

    Without any LLM key the generator answers with canned recipes and
    placeholder images so the rest of the pipeline can run locally.
    """

    def __init__(
        self,
        llm_client: Optional[LLMClient] = None,
        image_api_key: Optional[str] = OPENAI_API_KEY,
        timeout_seconds: float = GENERATION_TIMEOUT_SECONDS,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        rng: Optional[random.Random] = None,
    ):
        self.llm_client = llm_client or LLMClient()
        self.image_api_key = image_api_key
        self.timeout_seconds = timeout_seconds
        self._transport = transport
        self._rng = rng or random.Random()

    @property
    def mock_mode(self) -> bool:
        return not self.llm_client.is_configured

    async def generate_dessert(
        self, ingredients: str, theme: Theme = Theme.FEMININE, language: Language = Language.PT
    ) -> GeneratedDessert:
        """
        Raises:
            UpstreamRateLimitError: the provider throttled us
            UpstreamGenerationError: any other failure, including the timeout
        """
        theme = Theme(theme)
        language = Language(language)

        if self.mock_mode:
            logger.info("🎭 GENERATOR: Mock mode, configure GEMINI_API_KEY for real generation")
            return self.mock_dessert(theme, language)

        try:
            return await asyncio.wait_for(
                self._generate(ingredients, theme, language), timeout=self.timeout_seconds
            )
        except asyncio.TimeoutError:
            logger.error(f"❌ GENERATOR: Timed out after {self.timeout_seconds}s")
            raise UpstreamGenerationError(f"Generation timed out after {self.timeout_seconds}s")

    async def _generate(self, ingredients: str, theme: Theme, language: Language) -> GeneratedDessert:
        logger.info(f"🤖 GENERATOR: Generating recipe ({theme.value}/{language.value})")
        prompt = build_recipe_prompt(ingredients, theme, language)

        try:
            completion, metadata = await self.llm_client.generate_completion(
                prompt, parameters=RECIPE_PARAMETERS
            )
        except LLMError as e:
            if e.is_rate_limit:
                logger.error(f"❌ GENERATOR: Provider rate limited: {e}")
                raise UpstreamRateLimitError(str(e), retry_after=e.retry_after) from e
            logger.error(f"❌ GENERATOR: Recipe generation failed: {e}")
            raise UpstreamGenerationError(str(e)) from e

        try:
            recipe = GeneratedDessert(**extract_json_object(completion))
        except (ValueError, ValidationError, TypeError) as e:
            logger.error(f"❌ GENERATOR: Unusable recipe from {metadata.get('provider')}: {e}")
            raise UpstreamGenerationError(f"Invalid recipe response: {e}") from e

        logger.info(f"🎨 GENERATOR: Generating image for '{recipe.name}'")
        recipe.image = await self.generate_image(recipe.name, theme)

        logger.info(f"✅ GENERATOR: Generated '{recipe.name}' via {metadata.get('provider')}")
        return recipe

    async def generate_image(self, name: str, theme: Theme) -> str:
        """Illustration URL. Falls back to a themed placeholder."""
        if not self.image_api_key:
            return self.placeholder_image(theme)

        try:
            async with httpx.AsyncClient(
                timeout=self.timeout_seconds, transport=self._transport
            ) as client:
                response = await client.post(
                    OPENAI_IMAGES_URL,
                    headers={
                        "Authorization": f"Bearer {self.image_api_key}",
                        "Content-Type": "application/json",
                    },
                    json={
                        "model": IMAGE_MODEL,
                        "prompt": build_image_prompt(name, theme),
                        "n": 1,
                        "size": IMAGE_SIZE,
                    },
                )
                response.raise_for_status()
                return response.json()["data"][0]["url"]
        except (httpx.HTTPError, KeyError, IndexError, ValueError) as e:
            logger.warning(f"⚠️ GENERATOR: Image generation failed, using placeholder: {e}")
            return self.placeholder_image(theme)

    def placeholder_image(self, theme: Theme) -> str:
        images = PLACEHOLDER_IMAGES.get(theme, PLACEHOLDER_IMAGES[Theme.FEMININE])
        return self._rng.choice(images)

    def mock_dessert(self, theme: Theme, language: Language) -> GeneratedDessert:
        recipes = MOCK_RECIPES.get(language, MOCK_RECIPES[Language.EN])
        recipe = recipes.get(theme, recipes[Theme.FEMININE])
        return GeneratedDessert(**recipe, image=self.placeholder_image(theme))
