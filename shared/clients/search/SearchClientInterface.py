from abc import abstractmethod

from shared.clients.ClientInterface import ClientInterface
from shared.clients.auth.CredentialProvider import CredentialProvider
from shared.helper.HelperConfig import HelperConfig
from shared.query.errors import ServerError
from shared.query.models.Compiled import CompiledRequest


class SearchClientInterface(ClientInterface):
    """Transport to a search backend: sends compiled requests and returns raw envelopes."""

    def __init__(self, helper_config: HelperConfig, credentials: CredentialProvider | None = None):
        super().__init__(helper_config=helper_config, credentials=credentials)

    ##########################################
    ################ GETTER ##################
    ##########################################

    ################ GENERAL ##################
    def _get_client_type(self) -> str:
        """
        Returns the type of the client. E.g. "search"
        """
        return "search"

    ################ ENDPOINTS ##################
    @abstractmethod
    def _get_endpoint_query(self) -> str:
        """
        Returns the endpoint path compiled query documents are posted to.

        Returns:
            str: The endpoint path (e.g. "/v1/graphql")
        """
        pass

    ################ PAYLOAD BUILDER ##################
    @abstractmethod
    def get_query_payload(self, request: CompiledRequest) -> bytes:
        """
        Encodes a compiled request into the request body.

        Args:
            request (CompiledRequest): The compiled request.

        Returns:
            bytes: The encoded request body.
        """
        pass

    ##########################################
    ########### RESPONSE PARSER ##############
    ##########################################

    @abstractmethod
    def extract_envelope(self, raw_response: dict) -> dict:
        """
        Extracts the envelope from a raw backend response.

        Args:
            raw_response (dict): The parsed JSON response body.

        Returns:
            dict: An envelope with the keys "data", "errors" and, optionally, "extensions".
        """
        pass

    ##########################################
    ############### REQUESTS #################
    ##########################################

    async def send(self, request: CompiledRequest, timeout: float | None = None) -> dict:
        """Send one compiled request and return its raw envelope.

        Args:
            request (CompiledRequest): The compiled request.
            timeout (float | None): Timeout for this attempt, in seconds.

        Returns:
            dict: The raw backend envelope.

        Raises:
            TransportError: On network failure or timeout.
            BackendError: The matching subclass for non-2xx statuses.
        """
        resp = await self.do_request(
            method="POST",
            content=self.get_query_payload(request),
            endpoint=self._get_endpoint_query(),
            additional_headers={"Content-Type": "application/json"},
            raise_on_error=True,
            timeout=timeout,
        )
        try:
            raw_response = resp.json()
        except ValueError as e:
            raise ServerError(
                "Backend returned a non-JSON body with status %d" % resp.status_code,
                status_code=resp.status_code,
                detail=resp.text[:500],
            ) from e
        return self.extract_envelope(raw_response=raw_response)
