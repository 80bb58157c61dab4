from shared.clients.auth.CredentialProvider import CredentialProvider
from shared.clients.search.SearchClientInterface import SearchClientInterface
from shared.helper.HelperConfig import HelperConfig
from shared.models.config import EnvConfig
from shared.query.models.Compiled import CompiledRequest


class SearchClientGraphql(SearchClientInterface):
    def __init__(self, helper_config: HelperConfig, credentials: CredentialProvider | None = None):
        super().__init__(helper_config=helper_config, credentials=credentials)
        self._base_url = self.get_config_val("BASE_URL", default=None, val_type="string")
        self._endpoint = self.get_config_val("ENDPOINT", default="/v1/graphql", val_type="string")

    ##########################################
    ################ GETTER ##################
    ##########################################

    ################ GENERAL ##################
    def _get_engine_name(self) -> str:
        return "Graphql"

    ################ CONFIG ##################
    def _get_required_config(self) -> list[EnvConfig]:
        return [
            EnvConfig(env_key="BASE_URL", val_type="string", default=None),
            EnvConfig(env_key="ENDPOINT", val_type="string", default="/v1/graphql"),
            EnvConfig(env_key="API_KEY", val_type="string", default=""),
            EnvConfig(env_key="USERNAME", val_type="string", default=""),
            EnvConfig(env_key="PASSWORD", val_type="string", default=""),
        ]

    ################ ENDPOINTS ##################
    def _get_base_url(self) -> str:
        return self._base_url

    def _get_endpoint_healthcheck(self) -> str:
        return "/v1/.well-known/ready"

    def _get_endpoint_query(self) -> str:
        return self._endpoint

    ##########################################
    ########### PAYLOAD BUILDER ##############
    ##########################################

    def get_query_payload(self, request: CompiledRequest) -> bytes:
        return request.to_bytes()

    ##########################################
    ########### RESPONSE PARSER ##############
    ##########################################

    def extract_envelope(self, raw_response: dict) -> dict:
        envelope = {
            "data": raw_response.get("data"),
            "errors": raw_response.get("errors") or [],
        }
        if raw_response.get("extensions"):
            envelope["extensions"] = raw_response["extensions"]
        return envelope
