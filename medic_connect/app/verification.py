# verification.py
import logging
from typing import Iterable

from .errors import NotFoundError, ValidationError
from .schemas import Provider, ScanReport, VerificationStatus


class VerificationWorkflow:
    """Document review for providers. Only verified providers expose bookable slots."""

    def __init__(self, registry, subscriptions=None):
        self.registry = registry
        self.subscriptions = subscriptions

    def submit(self, profile, documents=None) -> Provider:
        provider = self.registry.register_provider(profile, documents)
        if self.subscriptions is not None:
            self.subscriptions.open(provider.id)
        logging.info(f"Verification submitted for provider {provider.id}")
        return provider

    def approve(self, provider_id: str) -> Provider:
        provider = self.registry.get_provider(provider_id)
        if provider.verification_status == VerificationStatus.PENDING:
            missing = provider.missing_documents()
            if missing:
                logging.info(f"Approval refused for provider {provider_id}, missing {[kind.value for kind in missing]}")
                raise ValidationError([f"documents.{kind.value}" for kind in missing], reason="missing-documents")
        provider = self.registry.update_verification(provider_id, VerificationStatus.VERIFIED)
        if self.subscriptions is not None:
            self.subscriptions.activate(provider_id)
        return provider

    def reject(self, provider_id: str) -> Provider:
        return self.registry.update_verification(provider_id, VerificationStatus.REJECTED)

    def decide(self, provider_id: str, decision) -> Provider:
        try:
            decision = VerificationStatus(decision)
        except ValueError:
            raise ValidationError(["decision"])
        if decision == VerificationStatus.VERIFIED:
            return self.approve(provider_id)
        if decision == VerificationStatus.REJECTED:
            return self.reject(provider_id)
        raise ValidationError(["decision"])

    def scan_pending_batch(self, provider_ids: Iterable[str]) -> ScanReport:
        """Report on a batch of providers ahead of manual review. Changes nothing."""
        provider_ids = list(provider_ids)
        report = ScanReport(scanned=len(provider_ids))
        for provider_id in provider_ids:
            try:
                provider = self.registry.get_provider(provider_id)
            except NotFoundError:
                report.unknown.append(provider_id)
                continue
            if provider.verification_status != VerificationStatus.PENDING:
                report.not_pending.append(provider_id)
                continue
            report.pending.append(provider_id)
            missing = provider.missing_documents()
            if missing:
                report.missing_documents[provider_id] = missing
        logging.info(f"Batch scan of {report.scanned} providers: {len(report.pending)} pending, "
                     f"{len(report.missing_documents)} missing documents, {len(report.unknown)} unknown")
        return report
