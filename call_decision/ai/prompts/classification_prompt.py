"""
Call Classification Prompt.

Asks the oracle for a taxonomy-constrained classification of one call. The
reply is a proposal: the decision engine's phases reconcile it with the
rule-based signals and never take it as the final answer.

Extracts:
- Primary incident (tipo + motivo) and up to two secondary incidents
- Recall information (esRellamada, incidenciaRelacionada)
- Client and policy data mentioned in the call or in tool results
"""

CLASSIFICATION_SYSTEM_PROMPT = (
    "Eres un analista experto de llamadas de atención al cliente de una correduría de seguros. "
    "Clasificas cada llamada usando EXCLUSIVAMENTE los pares tipo/motivo de la taxonomía proporcionada. "
    "Debes devolver SOLO un objeto JSON válido, sin texto adicional ni bloques de código."
)

CLASSIFICATION_PROMPT = """Analiza la transcripción de esta llamada y propone su clasificación.

Devuelve SOLO un objeto JSON válido. Empieza con {{ y termina con }}.

**TAXONOMÍA (tipo | motivo):**
{taxonomy}

**REGLAS:**
- Usa únicamente pares tipo/motivo de la taxonomía, escritos exactamente igual.
- incidenciaPrincipal es la gestión que el cliente realmente solicita.
- incidenciasSecundarias solo incluye gestiones independientes pedidas por el cliente (máximo 2).
- Si el cliente rechaza hablar con la IA, o no es el tomador, no hay incidencias secundarias.
- esRellamada es true solo si el cliente dice que ya llamó por el mismo asunto.
- datosExtraidos solo contiene datos que aparecen en la llamada o en los resultados de herramientas.
  Omite las claves sin valor; nunca uses cadenas vacías.
- confidence es un número entre 0 y 1.

**FORMATO DE RESPUESTA:**
{{
  "incidenciaPrincipal": {{"tipo": "...", "motivo": "..."}},
  "incidenciasSecundarias": [{{"tipo": "...", "motivo": "..."}}],
  "confidence": 0.0,
  "esRellamada": false,
  "incidenciaRelacionada": null,
  "datosExtraidos": {{
    "nombreCliente": "...",
    "dni": "...",
    "telefono": "...",
    "email": "...",
    "numeroPoliza": "...",
    "codigoCliente": "...",
    "cuentaBancaria": "...",
    "direccion": "...",
    "fechaEfecto": "...",
    "nuevoValor": "..."
  }}
}}

**TRANSCRIPCIÓN:**
{transcript}
"""


def build_classification_prompt(taxonomy_listing: str, transcript_text: str) -> str:
    """
    Build the user prompt for one call.

    Args:
        taxonomy_listing: One "tipo | motivo" line per taxonomy entry
        transcript_text: Formatted transcript

    Returns:
        Prompt text
    """
    return CLASSIFICATION_PROMPT.format(taxonomy=taxonomy_listing, transcript=transcript_text)
