from abc import abstractmethod
from typing import Any

import httpx
from shared.clients.rag.models.VectorPoint import SearchHit
from shared.clients.ClientInterface import ClientInterface
import json

from shared.helper.HelperConfig import HelperConfig


class RAGClientInterface(ClientInterface):
    def __init__(self, helper_config: HelperConfig):
        super().__init__(helper_config=helper_config)
        self.vector_size = int(helper_config.get_number_val("RAG_VECTOR_SIZE", default=1536, minimum=1))

    ##########################################
    ################ GETTER ##################
    ##########################################

    ################ GENERAL ##################
    def _get_client_type(self) -> str:
        """
        Returns the type of the client. E.g. "rag"
        """
        return "rag"

    ################ ENDPOINTS ##################
    @abstractmethod
    def _get_endpoint_points(self) -> str:
        """
        Returns the endpoint path for points upsert requests.

        Returns:
            str: The endpoint path for points requests (e.g. "/points")

        Raises:
            NotImplementedError: If the method is not implemented in a subclass.
        """
        pass

    @abstractmethod
    def _get_endpoint_search(self) -> str:
        """
        Returns the endpoint path for similarity search requests.

        Returns:
            str: The endpoint path (e.g. "/collections/my_col/points/search")

        Raises:
            NotImplementedError: If the method is not implemented in a subclass.
        """
        pass

    @abstractmethod
    def _get_endpoint_delete_points(self) -> str:
        """
        Returns the endpoint path for deleting points by ID or filter.

        Returns:
            str: The endpoint path (e.g. "/collections/my_col/points/delete")

        Raises:
            NotImplementedError: If the method is not implemented in a subclass.
        """
        pass

    @abstractmethod
    def _get_endpoint_check_collection_existence(self) -> str:
        """
        Returns the endpoint path for collection existence check requests.

        Returns:
            str: The endpoint path for collection existence check requests (e.g. "/existence_check")

        Raises:
            NotImplementedError: If the method is not implemented in a subclass.
        """
        pass

    @abstractmethod
    def _get_endpoint_create_collection(self) -> str:
        """
        Returns the endpoint path for create collection requests.

        Returns:
            str: The endpoint path for create collection requests (e.g. "/create_collection")

        Raises:
            NotImplementedError: If the method is not implemented in a subclass.
        """
        pass

    @abstractmethod
    def _get_endpoint_payload_index(self) -> str:
        """Returns the endpoint path for creating a payload field index."""
        pass

    ################ PAYLOADS ##################
    @abstractmethod
    def get_search_payload(self, vector: list[float], filters: list[dict], limit: int, score_threshold: float | None = None) -> dict:
        """
        Builds the backend-specific request payload for a similarity search.

        Args:
            vector (list[float]): The query vector.
            filters (list[dict]): Conditions that every hit must satisfy.
            limit (int): The maximum number of hits.
            score_threshold (float | None): Minimum similarity score, if any.

        Returns:
            dict: The payload for the search request.

        Raises:
            NotImplementedError: If the method is not implemented in a subclass.
        """
        pass

    @abstractmethod
    def get_delete_payload(self, filter: dict) -> dict:
        """
        Builds the backend-specific request payload for a filter-based delete.

        Args:
            filter (dict): The filter that identifies which points to delete.

        Returns:
            dict: The payload for the delete request.

        Raises:
            NotImplementedError: If the method is not implemented in a subclass.
        """
        pass

    @abstractmethod
    def get_delete_by_ids_payload(self, point_ids: list[str]) -> dict:
        """Builds the backend-specific request payload for deleting points by ID."""
        pass

    @abstractmethod
    def get_match_condition(self, key: str, value: Any) -> dict:
        """Builds a single exact-match filter condition on a payload field."""
        pass

    @abstractmethod
    def extract_search_hits(self, raw_response: dict) -> list[SearchHit]:
        """
        Extracts the hits from a raw search response, in backend order.

        Args:
            raw_response (dict): The raw JSON response from the search endpoint.

        Returns:
            list[SearchHit]: The parsed hits.

        Raises:
            NotImplementedError: If the method is not implemented in a subclass.
        """
        pass

    ##########################################
    ############### REQUESTS #################
    ##########################################

    async def do_existence_check(self) -> bool:
        """Check if a collection exists in the rag backend.

        Returns:
            bool: True if the collection exists, False otherwise.
        """
        resp = await self.do_request(method="GET", endpoint=self._get_endpoint_check_collection_existence(), raise_on_error=True)
        return bool(resp.json().get("result", {}).get("exists"))

    async def do_create_collection(self, vector_size: int | None = None, distance: str = "Cosine") -> httpx.Response:
        """Create a collection in the rag backend.

        Args:
            vector_size (int | None): The size of the vectors in the collection. Defaults to RAG_VECTOR_SIZE.
            distance (str): The distance metric for the vectors.

        Returns:
            httpx.Response: The response from the create collection request.
        """
        return await self.do_request(
            method="PUT",
            json={
                "vectors": {
                    "size": vector_size or self.vector_size,
                    "distance": distance}},
            endpoint=self._get_endpoint_create_collection(),
            raise_on_error=True)

    async def do_create_payload_index(self, field_name: str, field_schema: str = "keyword") -> httpx.Response:
        return await self.do_request(
            method="PUT",
            json={"field_name": field_name, "field_schema": field_schema},
            endpoint=self._get_endpoint_payload_index(),
            raise_on_error=True)

    async def do_ensure_collection(self) -> bool:
        """Create the collection and its filter indexes if it does not exist yet.

        Returns:
            bool: True if the collection was created by this call.
        """
        if await self.do_existence_check():
            return False
        await self.do_create_collection()
        for field_name in ("user_id", "file_id"):
            await self.do_create_payload_index(field_name)
        self.logging.info("Created RAG collection on %s with vector size %d.", self.get_engine_name(), self.vector_size)
        return True

    async def do_upsert_points(self, points: list[dict[str, Any]]) -> httpx.Response:
        """Upsert points into the rag backend collection.
        Inserts new points or replaces existing ones if a point with the same ID already exists.

        Args:
            points (list[dict[str, Any]]): The list of points to upsert.

        Returns:
            httpx.Response: The response from the upsert request.
        """
        return await self.do_request(
            method="PUT",
            content=json.dumps({"points": points}),
            endpoint=self._get_endpoint_points(),
            params={"wait": "true"},
            additional_headers={"Content-Type": "application/json"},
            raise_on_error=True)

    async def do_delete_points(self, point_ids: list[str]) -> None:
        """Deletes the given points from the RAG backend. A no-op for an empty list.

        Args:
            point_ids (list[str]): IDs of the points to delete.
        """
        if not point_ids:
            return
        await self.do_request(
            method="POST",
            content=json.dumps(self.get_delete_by_ids_payload(point_ids)),
            endpoint=self._get_endpoint_delete_points(),
            params={"wait": "true"},
            additional_headers={"Content-Type": "application/json"},
            raise_on_error=True,
        )

    async def do_delete_points_by_filter(self, filter: dict) -> None:
        """Deletes all points matching the given filter from the RAG backend.
        Used when a file is re-vectorized, to remove vectors no chunk record points to.

        Args:
            filter (dict): The filter that identifies which points to delete.
                           Must always include user_id to enforce access isolation.
        """
        await self.do_request(
            method="POST",
            content=json.dumps(self.get_delete_payload(filter)),
            endpoint=self._get_endpoint_delete_points(),
            params={"wait": "true"},
            additional_headers={"Content-Type": "application/json"},
            raise_on_error=True,
        )

    async def do_delete_file_points(self, user_id: str, file_id: str) -> None:
        """Deletes every point of one file of one user."""
        await self.do_delete_points_by_filter({
            "must": [
                self.get_match_condition("user_id", user_id),
                self.get_match_condition("file_id", file_id),
            ]
        })

    async def do_search(self, vector: list[float], user_id: str, limit: int, score_threshold: float | None = None) -> list[SearchHit]:
        """Similarity search restricted to one user's points.

        Args:
            vector (list[float]): The query vector.
            user_id (str): Only points with this user_id are returned.
            limit (int): The maximum number of hits.
            score_threshold (float | None): Hits scoring below this are dropped by the backend.

        Returns:
            list[SearchHit]: Hits as ordered by the backend.

        Raises:
            ValueError: If user_id is empty.
        """
        if not user_id:
            raise ValueError("user_id is required for every RAG search.")
        resp = await self.do_request(
            method="POST",
            content=json.dumps(self.get_search_payload(vector, [self.get_match_condition("user_id", user_id)], limit, score_threshold)),
            endpoint=self._get_endpoint_search(),
            additional_headers={"Content-Type": "application/json"},
            raise_on_error=True,
        )
        return self.extract_search_hits(resp.json())
