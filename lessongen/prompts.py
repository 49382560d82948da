"""Fixed prompt text used when assembling generation requests."""

DEFAULT_FORMAT_REQUIREMENTS = "No specific format requirements."

DEFAULT_CONTEXT_INSTRUCTIONS = (
    "Use the following context information to complete the task."
)

NOT_FILLED_MARKER = "[Not filled]"

DEFAULT_ITEM_PROMPT = "Generate 1 multiple choice question based on the passage."

ITEM_SET_FORMAT_REQUIREMENTS = """Each question must have:
- Clear question text grounded in the provided context
- Exactly four answer choices labelled A, B, C and D
- One or more aligned standards
- Exactly one correct answer letter"""

ITEM_SET_SCHEMA_NAME = "generate_mcqs"

ITEM_SET_SCHEMA_DESCRIPTION = (
    "Generate {count} multiple choice question{plural} with answer choices, "
    "standards, and answer key"
)

DEFAULT_IMAGE_PROMPT = "A high-quality photographic image."

IMAGE_SIZE_INSTRUCTION = "Create an image at 2200 x 1400 pixels: {prompt}"

ALT_TEXT_PROMPT = (
    "Describe this educational image in 1-2 concise sentences for alt text. "
    "Focus on the main subject and educational content."
)

STRUCTURED_OUTPUT_SYSTEM_PROMPT = (
    "You are a helpful assistant that always answers by calling the provided "
    "function with arguments that satisfy its schema."
)
