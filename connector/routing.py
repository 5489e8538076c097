"""
Endpoint URL construction for the document store REST API.
"""

from shared.errors import ValidationError


class EndpointRouter:
    """Builds ``{service_url}{EntityType}.json/...`` URLs."""

    def __init__(self, service_url: str):
        self.service_url = service_url

    @property
    def service_url(self) -> str:
        return self._service_url

    @service_url.setter
    def service_url(self, value: str) -> None:
        if not value:
            raise ValidationError("Cannot set empty service-url")
        self._service_url = value

    def _base(self, entity_type: str) -> str:
        return f"{self._service_url}{entity_type}.json"

    def crud(self, entity_type: str, object_id: str = "") -> str:
        url = f"{self._base(entity_type)}/crud"
        return f"{url}/{object_id}" if object_id else url

    def version(self, entity_type: str, object_id: str, version_id: str) -> str:
        return f"{self._base(entity_type)}/history/{object_id}/{version_id}"

    def search(self, entity_type: str) -> str:
        return f"{self._base(entity_type)}/search"

    def aggregate(self, entity_type: str) -> str:
        return f"{self._base(entity_type)}/aggregate"

    def history(self, entity_type: str, object_id: str) -> str:
        return f"{self._base(entity_type)}/history/{object_id}"

    def history_search(self, entity_type: str) -> str:
        return f"{self._base(entity_type)}/history/search"

    def undelete(self, entity_type: str, object_id: str) -> str:
        return f"{self._base(entity_type)}/history/undelete/{object_id}"

    def finalize_invoice(self, invoice_id: str) -> str:
        return f"{self._base('Invoice')}/finalize/{invoice_id}"

    def binary(self, file_id: str) -> str:
        return f"{self._base('File')}/binary/{file_id}"
