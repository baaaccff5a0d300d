"""
Contract Assembly Module

Produces the French debt-acknowledgment text ("reconnaissance de dette") for a
loan. A remote text generation service is used when configured; the local
template is used whenever it is missing, unreachable or returns nothing.
"""

import httpx
from dataclasses import dataclass
from datetime import date
from typing import Optional

from .exceptions import ExternalServiceUnavailable
from .loans import Loan, Party
from .logging_config import get_logger

logger = get_logger("lending.contracts")

PLACEHOLDER = "___"


@dataclass(frozen=True)
class ContractDocument:
    """Contract text and where it came from ("generated" or "template")"""
    text: str
    source: str


def format_date_fr(value: Optional[date]) -> str:
    """dd/mm/yyyy, as printed on French contracts"""
    if value is None:
        return PLACEHOLDER
    return value.strftime("%d/%m/%Y")


def describe_party(party: Party) -> str:
    civility = f"{party.civility} " if party.civility else ""
    return (
        f"{civility}{party.name}, né(e) le {format_date_fr(party.birth_date)} "
        f"à {party.birth_place or PLACEHOLDER}, résidant à {party.address or PLACEHOLDER}"
    )


def payment_clause(loan: Loan) -> str:
    clause = ("Le remboursement pourra s'effectuer par virement bancaire ou tout autre "
              "moyen convenu entre les parties.")
    if loan.lender_iban:
        clause += f"\nCoordonnées Bancaires (IBAN) : {loan.lender_iban}"
    if loan.lender_payment_link:
        clause += f"\nLien de paiement : {loan.lender_payment_link}"
    return clause


def late_payment_clause(loan: Loan) -> str:
    rate = f"{loan.late_interest_rate.normalize():f}"
    return (
        "ARTICLE : RETARD DE PAIEMENT\n"
        f"À défaut de remboursement intégral au {format_date_fr(loan.repayment_date)}, "
        "le capital restant dû produira des intérêts de retard au taux annuel de "
        f"{rate} %. Ces intérêts courent de plein droit dès le lendemain de l'échéance. "
        "Le montant total des frais et intérêts ne pourra excéder le taux d'usure légal en vigueur."
    )


def closing_line(loan: Loan, signed_on: date) -> str:
    return (f"Fait à {loan.city or PLACEHOLDER}, le {format_date_fr(signed_on)} "
            "en deux exemplaires originaux.")


def render_template(loan: Loan, signed_on: date, repayment_currency: str = "EUR") -> str:
    """Deterministic local contract, contractually equivalent to the generated one"""
    return f"""RECONNAISSANCE DE DETTE (Standardisé)

ENTRE LES SOUSSIGNÉS :

LE PRÊTEUR :
{describe_party(loan.lender)}

ET

L'EMPRUNTEUR :
{describe_party(loan.borrower)}

IL A ÉTÉ CONVENU ET ARRÊTÉ CE QUI SUIT :

1. OBJET DU PRÊT
Le Prêteur consent ce jour à l'Emprunteur un prêt d'un montant principal de {loan.amount} {loan.currency}.
L'Emprunteur reconnaît avoir reçu cette somme le {format_date_fr(loan.loan_date)} par virement ou remise d'espèces.

2. REMBOURSEMENT ET DEVISE
L'Emprunteur s'engage irrévocablement à rembourser la totalité de la somme susmentionnée au plus tard le {format_date_fr(loan.repayment_date)}.
Il est expressément convenu que bien que le prêt soit libellé en {loan.currency}, le remboursement devra être effectué en {repayment_currency} selon la contre-valeur au jour du paiement.

MODALITÉS DE REMBOURSEMENT :
{payment_clause(loan)}

{late_payment_clause(loan)}

3. LOI APPLICABLE ET JURIDICTION
Le présent contrat est soumis au droit en vigueur dans le pays de signature. En cas de litige, les tribunaux compétents seront ceux du domicile du Prêteur.

{closing_line(loan, signed_on)}"""


def build_prompt(loan: Loan, signed_on: date, repayment_currency: str = "EUR") -> str:
    """Instructions sent to the text generation service"""
    return f"""Génère une reconnaissance de dette formelle et juridique en français.

IMPORTANT :
1. Le texte doit être structuré avec des sauts de ligne clairs.
2. NE PAS INCLURE DE ZONE DE SIGNATURE DANS LE TEXTE GÉNÉRÉ.
3. CLAUSE DE DEVISE : Le prêt est consenti en {loan.currency}, mais le remboursement doit impérativement être effectué en {repayment_currency}.
4. MODALITÉS DE PAIEMENT : Intègre impérativement cette phrase : "{payment_clause(loan)}".
5. INCLUS OBLIGATOIREMENT CETTE CLAUSE EXACTE :
"{late_payment_clause(loan)}"

ENTRE LES SOUSSIGNÉS :
1. LE PRÊTEUR : {describe_party(loan.lender)}
2. L'EMPRUNTEUR : {describe_party(loan.borrower)}

DÉTAILS DU PRÊT :
- Montant principal : {loan.amount} {loan.currency} (préciser en toutes lettres)
- Date du prêt (versement des fonds) : {format_date_fr(loan.loan_date)}
- Échéance de remboursement : {format_date_fr(loan.repayment_date)}

FORMATAGE :
- Titres en MAJUSCULES. Pas de markdown.
- Le texte doit STRICTEMENT se terminer par la phrase : "{closing_line(loan, signed_on)}"
- NE RIEN ÉCRIRE APRÈS CETTE PHRASE."""


class ContractAssembler:
    """Generates contract text remotely, falling back to the local template"""

    def __init__(
        self,
        generation_url: str = "",
        api_key: str = "",
        timeout: float = 20.0,
        temperature: float = 0.1,
        repayment_currency: str = "EUR",
        transport: Optional[httpx.BaseTransport] = None
    ):
        self.generation_url = generation_url
        self.api_key = api_key
        self.timeout = timeout
        self.temperature = temperature
        self.repayment_currency = repayment_currency
        self._client = httpx.Client(timeout=timeout, transport=transport)

    @property
    def enabled(self) -> bool:
        return bool(self.generation_url and self.api_key)

    def generate(self, loan: Loan, signed_on: Optional[date] = None) -> ContractDocument:
        """
        Contract text for the loan; never raises for service problems.

        Args:
            loan: Fully populated loan
            signed_on: Date printed in the closing line (loan creation date by default)
        """
        signed_on = signed_on or loan.signed_date or loan.created_at.date()

        if not self.enabled:
            logger.info("Contract generation not configured, using local template")
            return ContractDocument(render_template(loan, signed_on, self.repayment_currency), "template")

        try:
            text = self._request_text(build_prompt(loan, signed_on, self.repayment_currency))
            return ContractDocument(text, "generated")
        except ExternalServiceUnavailable as e:
            logger.warning(f"Contract generation failed for loan {loan.id}, using template: {e}")
            return ContractDocument(render_template(loan, signed_on, self.repayment_currency), "template")

    def _request_text(self, prompt: str) -> str:
        headers = {"Authorization": f"Bearer {self.api_key}"}
        try:
            response = self._client.post(
                self.generation_url,
                json={"prompt": prompt, "temperature": self.temperature},
                headers=headers
            )
        except httpx.HTTPError as e:
            raise ExternalServiceUnavailable(f"Generation service unreachable: {e}") from e

        if response.status_code != 200:
            raise ExternalServiceUnavailable(f"Generation service returned {response.status_code}")

        try:
            text = response.json().get("text")
        except (ValueError, AttributeError) as e:
            raise ExternalServiceUnavailable(f"Malformed generation response: {e}") from e

        if not isinstance(text, str) or not text.strip():
            raise ExternalServiceUnavailable("Empty generation response")
        return text.strip()

    def close(self):
        """Close the HTTP client"""
        self._client.close()
