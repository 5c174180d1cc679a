"""
Instruction prompts sent with every poster image, keyed by locale.
"""

from typing import Dict


DUTCH_PROMPT = """Bekijk deze evenement poster en haal de belangrijkste informatie eruit.

Antwoord ALLEEN met een JSON object in dit exacte formaat:
{
  "title": "evenement naam van poster (behoud Nederlandse tekst)",
  "startDate": "2024-12-15T09:00:00.000Z",
  "endDate": "2024-12-15T13:00:00.000Z",
  "location": "locatie of adres van poster (behoud Nederlandse tekst)",
  "description": "korte beschrijving van het evenement (behoud Nederlandse tekst)",
  "calendar": "Nationaal",
  "rawText": "ALLE tekst die je op de poster ziet, exact zoals het er staat, inclusief datum, tijd, locatie, beschrijving, etc."
}

Regels:
- Gebruik werkelijke datums van de poster
- Als geen tijd getoond, gebruik 09:00 voor start
- Als geen eindtijd, voeg 4 uur toe aan starttijd
- Voor calendar: gebruik "Internationaal" als buiten Nederland, "Beurzen en Diversen" voor beurzen/rommelmarkten, anders "Nationaal"
- BELANGRIJK: Behoud alle Nederlandse tekst, vertaal NIETS naar het Engels
- Voor rawText: kopieer ALLE zichtbare tekst van de poster, inclusief kleine details, datums, tijden, adressen, etc."""


ENGLISH_PROMPT = """Look at this event poster and extract the key information.

Reply ONLY with one JSON object in exactly this format:
{
  "title": "event name from the poster (keep the original language)",
  "startDate": "2024-12-15T09:00:00.000Z",
  "endDate": "2024-12-15T13:00:00.000Z",
  "location": "venue or address from the poster (keep the original language)",
  "description": "short description of the event (keep the original language)",
  "calendar": "Nationaal",
  "rawText": "ALL text visible on the poster, exactly as written, including dates, times, addresses, etc."
}

Rules:
- Use the actual dates shown on the poster
- If no time is shown, use 09:00 as the start
- If no end time is shown, add 4 hours to the start time
- For calendar: use "Internationaal" when outside the Netherlands, "Beurzen en Diversen" for fairs and swap meets, otherwise "Nationaal"
- IMPORTANT: do not translate any poster text
- For rawText: copy ALL visible text on the poster, including small print"""


PROMPTS: Dict[str, str] = {
    "nl": DUTCH_PROMPT,
    "en": ENGLISH_PROMPT,
}


def get_prompt(locale: str = "nl") -> str:
    """
    Return the instruction prompt for a locale.

    Raises:
        ValueError: if no prompt exists for the locale
    """
    try:
        return PROMPTS[locale]
    except KeyError:
        raise ValueError(f"No prompt for locale '{locale}', available: {', '.join(sorted(PROMPTS))}")
