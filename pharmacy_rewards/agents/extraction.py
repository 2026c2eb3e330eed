"""
Extraction Agent
Sends the invoice photo to a vision model together with the current product
and pharmacy lists and turns the JSON answer into an ExtractedInvoice.

The model does all fuzzy matching: it must answer with exact registered names
or null. Nothing here retries; a failure is reported once and the scan is
marked as errored by the caller.
"""

import json
import re
from typing import Any, Dict, List, Optional, Tuple

from langchain_openai import ChatOpenAI
from langchain_google_genai import ChatGoogleGenerativeAI
from langchain_core.messages import HumanMessage
from langchain_core.prompts import PromptTemplate
from pydantic import ValidationError

from pharmacy_rewards.exceptions import ExtractionFailure
from pharmacy_rewards.schemas.invoice import ExtractedInvoice, IdentityCard
from pharmacy_rewards.schemas.reference import Product, Pharmacy
from pharmacy_rewards.state import ScanProcessingState
from pharmacy_rewards.utils.logging import setup_logging, log_agent_action
from pharmacy_rewards.config import get_config


logger = setup_logging(__name__)
config = get_config()


INVOICE_PROMPT_TEMPLATE = """Analyze this invoice image STRICTLY.

You must extract and validate the following information against the provided lists:

1. PHARMACY MATCHING:
   - Extract the pharmacy name from the header.
   - Check if it matches ANY of these registered pharmacies: [{pharmacy_names}].
   - If it matches (even with slight variation), return the EXACT registered name.
   - If it does NOT match any, return null for pharmacyName.

2. NCF (Comprobante Fiscal):
   - Extract the NCF code (e.g. B0100000001, E4500000001).
   - It MUST start with {ncf_prefixes}.
   - If not found or invalid format, return null.

3. DATE:
   - Extract the invoice date (YYYY-MM-DD).
   - If invalid or not found, return null.

4. PRODUCTS:
   - Look for these specific active products: [{product_names}].
   - Return ONLY products that appear in this list, using the EXACT listed name.
   - For each match, extract the quantity and the unit price.

5. TOTAL AMOUNT:
   - Extract the total invoice amount.

Return a JSON object ONLY (no markdown):
{{"pharmacyName": "Registered Name" | null, "ncf": "String" | null, "invoiceDate": "YYYY-MM-DD" | null, "products": [{{"name": "Registered Product Name", "quantity": number, "unitPrice": number}}], "totalAmount": number, "rawPharmacyName": "What you actually saw", "confidence": "high" | "medium" | "low"}}"""


IDENTITY_PROMPT = """Analyze this Dominican Republic ID Card (Cedula).
Extract the Name and ID Number (Cedula).
Return a valid JSON object ONLY:
{"name": "Full Name", "idNumber": "000-0000000-0", "confidence": "high" | "medium" | "low"}"""


MOCK_INVOICE_RESPONSE = """```json
{
    "pharmacyName": null,
    "rawPharmacyName": "Mock Pharmacy",
    "ncf": "B0100000001",
    "invoiceDate": "2026-01-31",
    "products": [],
    "totalAmount": 0,
    "confidence": "low"
}
```"""

MOCK_IDENTITY_RESPONSE = '{"name": "Mock Person", "idNumber": "000-0000000-0", "confidence": "low"}'


def get_llm(model_name: str = None, settings=None):
    """Get LLM instance based on provider."""
    settings = settings or config
    model = model_name or settings.LLM_MODEL

    if settings.LLM_PROVIDER == "gemini":
        return ChatGoogleGenerativeAI(
            model=model,
            google_api_key=settings.GOOGLE_API_KEY,
            temperature=settings.LLM_TEMPERATURE,
            max_output_tokens=settings.LLM_MAX_TOKENS,
            timeout=settings.LLM_TIMEOUT,
        )
    else:  # OpenAI-compatible endpoints
        return ChatOpenAI(
            model=model,
            api_key=settings.LLM_API_KEY,
            base_url=settings.LLM_API_BASE,
            temperature=settings.LLM_TEMPERATURE,
            max_tokens=settings.LLM_MAX_TOKENS,
            timeout=settings.LLM_TIMEOUT,
        )


def build_invoice_prompt(
    products: List[Product],
    pharmacies: List[Pharmacy],
    ncf_prefixes: Tuple[str, ...] = None,
) -> str:
    """Fill the invoice prompt with the active product names and every pharmacy name."""
    prefixes = ncf_prefixes or config.VALID_NCF_PREFIXES
    prompt = PromptTemplate(
        input_variables=["pharmacy_names", "product_names", "ncf_prefixes"],
        template=INVOICE_PROMPT_TEMPLATE,
    )
    return prompt.format(
        pharmacy_names=", ".join(p.name for p in pharmacies),
        product_names=", ".join(p.name for p in products if p.is_active),
        ncf_prefixes=", ".join(f"'{prefix}'" for prefix in prefixes),
    )


def resolve_image_uri(image_ref: str, bucket: str = None) -> str:
    """Storage path -> gs:// URI. Fully qualified URIs are returned unchanged."""
    if "://" in image_ref:
        return image_ref
    bucket = bucket if bucket is not None else config.STORAGE_BUCKET
    if not bucket:
        raise ExtractionFailure(f"No storage bucket configured for image path: {image_ref}")
    return f"gs://{bucket}/{image_ref.lstrip('/')}"


def build_image_message(prompt: str, image_uri: str, mime_type: str = None, provider: str = None) -> HumanMessage:
    """One user turn carrying the image and the instructions."""
    provider = provider or config.LLM_PROVIDER
    if provider == "gemini":
        image_part = {
            "type": "media",
            "file_uri": image_uri,
            "mime_type": mime_type or config.IMAGE_MIME_TYPE,
        }
    else:
        image_part = {"type": "image_url", "image_url": {"url": image_uri}}
    return HumanMessage(content=[image_part, {"type": "text", "text": prompt}])


def get_llm_response_text(response) -> str:
    """Text of a chat model response; Gemini may return a list of content parts."""
    content = getattr(response, "content", response)
    if content is None:
        return ""
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        parts = []
        for part in content:
            if isinstance(part, str):
                parts.append(part)
            elif isinstance(part, dict) and part.get("type", "text") == "text":
                parts.append(str(part.get("text", "")))
        return "".join(parts)
    return str(content)


def parse_model_json(response_text: str) -> Dict[str, Any]:
    """
    Parse the model's JSON answer after removing code-fence markers.
    Anything other than a JSON object is an ExtractionFailure.
    """
    if not response_text or not response_text.strip():
        raise ExtractionFailure("Empty response from AI")

    json_str = re.sub(r"```(?:json)?", "", response_text, flags=re.IGNORECASE).strip()

    try:
        result = json.loads(json_str)
    except json.JSONDecodeError as e:
        preview = json_str[:300]
        raise ExtractionFailure(f"Could not parse JSON from AI response: {e.msg}: {preview}") from e

    if not isinstance(result, dict):
        raise ExtractionFailure(f"AI response is not a JSON object: {type(result).__name__}")

    return result


class InvoiceExtractor:
    """
    Vision-model adapter shared by the invoice and identity-card flows.

    Exactly one model call per scan; the raw parsed dict is returned alongside
    the typed record so it can be stored for audit.
    """

    def __init__(self, llm=None, settings=None):
        self._llm = llm
        self.settings = settings or config

    async def _generate(self, image_ref: Optional[str], prompt: str, mock_response: str) -> str:
        if not image_ref:
            raise ExtractionFailure("Storage path not found in scan document")

        if self.settings.LLM_MOCK_MODE:
            logger.info("Mock mode enabled - returning sample JSON response")
            return mock_response

        image_uri = resolve_image_uri(image_ref, self.settings.STORAGE_BUCKET)
        message = build_image_message(
            prompt,
            image_uri,
            mime_type=self.settings.IMAGE_MIME_TYPE,
            provider=self.settings.LLM_PROVIDER,
        )

        llm = self._llm or get_llm(self.settings.LLM_MODEL, self.settings)
        response = await llm.ainvoke([message])
        text = get_llm_response_text(response).strip()
        if not text:
            raise ExtractionFailure("Empty response from AI")
        return text

    async def extract_invoice(
        self,
        image_ref: Optional[str],
        products: List[Product],
        pharmacies: List[Pharmacy],
    ) -> Tuple[ExtractedInvoice, Dict[str, Any]]:
        prompt = build_invoice_prompt(products, pharmacies, self.settings.VALID_NCF_PREFIXES)
        response_text = await self._generate(image_ref, prompt, MOCK_INVOICE_RESPONSE)
        logger.debug(f"AI response (first 500 chars): {response_text[:500]}")

        raw = parse_model_json(response_text)
        try:
            invoice = ExtractedInvoice.model_validate(raw)
        except ValidationError as e:
            raise ExtractionFailure(f"AI response does not match the invoice shape: {e}") from e
        return invoice, raw

    async def extract_identity(self, image_ref: Optional[str]) -> Tuple[IdentityCard, Dict[str, Any]]:
        response_text = await self._generate(image_ref, IDENTITY_PROMPT, MOCK_IDENTITY_RESPONSE)
        raw = parse_model_json(response_text)
        try:
            card = IdentityCard.model_validate(raw)
        except ValidationError as e:
            raise ExtractionFailure(f"AI response does not match the ID card shape: {e}") from e
        return card, raw


async def extraction_agent(state: ScanProcessingState, services) -> ScanProcessingState:
    """
    Extraction Agent node.

    Updates state:
    - extracted_invoice, ai_response
    - extraction_error (if applicable)

    Adds reasoning log entry.
    """
    logger.info(f"[ExtractionAgent] Processing scan: {state.scan_id}")

    try:
        invoice, raw = await services.extractor.extract_invoice(
            state.image_ref,
            state.products,
            state.pharmacies,
        )
    except ExtractionFailure as e:
        logger.error(f"[ExtractionAgent] {e}")
        state.extraction_error = str(e)
        state.add_reasoning(
            agent_name="ExtractionAgent",
            message=f"Extraction failed: {e}",
        )
        return state
    except Exception as e:
        logger.exception(f"[ExtractionAgent] Unexpected error: {e}")
        state.extraction_error = str(e) or type(e).__name__
        state.add_reasoning(
            agent_name="ExtractionAgent",
            message=f"Unexpected error during extraction: {e}",
        )
        return state

    state.extracted_invoice = invoice
    state.ai_response = raw

    log_agent_action(
        logger,
        "ExtractionAgent",
        "Invoice extracted",
        {
            "pharmacy": invoice.pharmacy_name,
            "ncf": invoice.ncf,
            "total": invoice.total_amount,
            "products_count": len(invoice.products),
        },
        scan_id=state.scan_id,
    )

    state.add_reasoning(
        agent_name="ExtractionAgent",
        message=f"Read invoice from {invoice.pharmacy_name or invoice.raw_pharmacy_name or 'unknown pharmacy'} "
                f"with {len(invoice.products)} registered product(s). Model confidence: {invoice.confidence or 'n/a'}.",
        action="extraction_complete",
    )

    return state
