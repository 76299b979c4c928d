"""
Prompt templates and localized strings.
Generation prompts use string.Template substitution; ``$text`` is the
transcript, extracted document text, or summary being worked on.
"""

from __future__ import annotations

from string import Template
from typing import Dict

DEFAULT_LANGUAGE = "en"

_PROMPTS: Dict[str, Dict[str, Template]] = {
    "en": {
        "transcribe": Template(
            "Transcribe this audio recording faithfully in English. "
            "Return only the transcribed text, with no comments or formatting."
        ),
        "title": Template(
            """Write a short, descriptive title (at most 60 characters) for this text:

$text

Return only the title on a single line, without quotes or formatting."""
        ),
        "summary": Template(
            """Write a concise, structured summary of this text:

$text

The summary must:
- Be written in English
- Capture the key points and main ideas
- Use bullet points or short paragraphs
- Be roughly 100-200 words
- Be easy for the reader to edit

Return only the summary, with no title or introduction."""
        ),
        "detailed_note": Template(
            """Turn this transcript into a detailed, well-structured note:

$text

The note must:
- Be written in English
- Have a clear structure with headings and subheadings
- Develop the main ideas with details
- Be well formatted and professional
- Include every important point from the transcript
- Be easy for the reader to edit

Use simple markdown formatting (# headings, - lists, etc.)."""
        ),
        "note_from_summary": Template(
            """Expand this summary into a detailed, well-structured note:

$text

The note must:
- Be written in English
- Have a clear structure with headings and subheadings
- Develop every point of the summary with more detail
- Be well formatted and professional
- Use simple markdown formatting (# headings, - lists, etc.)"""
        ),
    },
    "fr": {
        "transcribe": Template(
            "Transcris fidèlement cet enregistrement audio en français. "
            "Retourne uniquement le texte transcrit, sans commentaires ni formatage."
        ),
        "title": Template(
            """Génère un titre court et descriptif (maximum 60 caractères) pour ce texte :

$text

Retourne uniquement le titre sur une seule ligne, sans guillemets ni formatage."""
        ),
        "summary": Template(
            """Crée un résumé concis et structuré de ce texte :

$text

Le résumé doit :
- Être en français
- Capturer les points clés et idées principales
- Être organisé avec des puces ou des paragraphes courts
- Faire environ 100-200 mots
- Être facilement modifiable par l'utilisateur

Retourne uniquement le résumé, sans titre ni introduction."""
        ),
        "detailed_note": Template(
            """Transforme cette transcription en une note détaillée et bien structurée :

$text

La note doit :
- Être en français
- Avoir une structure claire avec des titres et sous-titres
- Développer les idées principales avec des détails
- Être bien formatée et professionnelle
- Inclure tous les points importants de la transcription
- Être facilement modifiable par l'utilisateur

Utilise un formatage markdown simple (titres avec #, listes avec -, etc.)."""
        ),
        "note_from_summary": Template(
            """Développe ce résumé en une note détaillée et bien structurée :

$text

La note doit :
- Être en français
- Avoir une structure claire avec des titres et sous-titres
- Développer chaque point du résumé avec plus de détails
- Être bien formatée et professionnelle
- Utiliser un formatage markdown simple (titres avec #, listes avec -, etc.)"""
        ),
    },
}

_STRINGS: Dict[str, Dict[str, str]] = {
    "en": {
        "untitled": "Untitled",
        "untitled_note": "Untitled Note",
        "summary_failed": "Summary generation failed.",
        "detailed_note_failed": "Detailed note generation failed.",
        "document_placeholder": (
            "No detailed note is generated for documents. "
            "See the raw text view for the full extracted text."
        ),
        "step_create": "Creating note...",
        "step_upload": "Uploading audio...",
        "step_transcribe": "Transcribing with AI...",
        "step_title": "Generating title...",
        "step_summary": "Writing summary...",
        "step_detailed_note": "Writing detailed note...",
        "step_extract": "Extracting document text...",
        "step_store_document": "Storing document...",
        "label_upload": "Upload audio",
        "label_transcribe": "AI transcription",
        "label_title": "Title",
        "label_summary": "Summary",
        "label_detailed_note": "Detailed note",
        "label_extract": "Extract text",
        "success_recording": "Recording processed successfully!",
        "success_upload": "Audio file processed successfully!",
        "success_document": "Document processed successfully!",
        "failure_recording": "Processing the recording failed.",
        "failure_document": "Processing the document failed.",
        "nothing_to_process": "Nothing to process.",
        "cancelled": "Processing cancelled.",
        "status_ready": "Ready to record",
        "status_recording": "Recording...",
        "status_processing": "Processing...",
        "status_limit": "Stopped at limit ($minutes min)",
        "cancel": "Cancel",
        "close": "Close",
    },
    "fr": {
        "untitled": "Sans titre",
        "untitled_note": "Note sans titre",
        "summary_failed": "Erreur lors de la génération du résumé",
        "detailed_note_failed": "Erreur lors de la génération de la note détaillée",
        "document_placeholder": (
            "Aucune note détaillée n'est générée pour les documents. "
            "Consultez la vue texte brut pour le texte complet extrait."
        ),
        "step_create": "Création de la note...",
        "step_upload": "Téléversement de l'audio...",
        "step_transcribe": "Transcription par IA...",
        "step_title": "Génération du titre...",
        "step_summary": "Création du résumé...",
        "step_detailed_note": "Rédaction de la note détaillée...",
        "step_extract": "Extraction du texte du document...",
        "step_store_document": "Enregistrement du document...",
        "label_upload": "Téléversement de l'audio",
        "label_transcribe": "Transcription par IA",
        "label_title": "Génération du titre",
        "label_summary": "Création du résumé",
        "label_detailed_note": "Rédaction de la note détaillée",
        "label_extract": "Extraction du texte",
        "success_recording": "Enregistrement traité avec succès !",
        "success_upload": "Fichier audio traité avec succès !",
        "success_document": "Document traité avec succès !",
        "failure_recording": "Erreur lors du traitement de l'enregistrement",
        "failure_document": "Erreur lors du traitement du document",
        "nothing_to_process": "Rien à traiter.",
        "cancelled": "Traitement annulé.",
        "status_ready": "Prêt à enregistrer",
        "status_recording": "Enregistrement...",
        "status_processing": "Traitement...",
        "status_limit": "Arrêté à la limite ($minutes min)",
        "cancel": "Annuler",
        "close": "Fermer",
    },
}


def _language(language: str) -> str:
    return language if language in _PROMPTS else DEFAULT_LANGUAGE


def get_prompt(kind: str, language: str = DEFAULT_LANGUAGE, text: str = "") -> str:
    return _PROMPTS[_language(language)][kind].substitute(text=text)


def get_text(key: str, language: str = DEFAULT_LANGUAGE, **values) -> str:
    value = _STRINGS[_language(language)][key]
    if values:
        return Template(value).safe_substitute(**values)
    return value
