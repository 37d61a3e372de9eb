"""
Integration tests for the publication saga.

Runs PublicationPipeline against the in-memory storage network, the local
encryption service and a recording wallet.
"""

import pytest

from sdk.patron_sdk import (
    BlobPipeline,
    CommitRejected,
    EncryptionGateway,
    InMemoryStorageNetwork,
    LocalEncryptionService,
    PartialPipelineFailure,
    PublicationError,
    PublicationPipeline,
    PublishMetadata,
    PublishStage,
    PublishState,
    SessionKey,
)

PACKAGE_ID = "0xpkg"
MASTER_SECRET = b"publication-tests-master-secret!"


async def approve_all(identity, capability_ref, address):
    return True


async def no_sleep(seconds):
    return None


@pytest.fixture
def network():
    return InMemoryStorageNetwork()


@pytest.fixture
def gateway():
    return EncryptionGateway(LocalEncryptionService(MASTER_SECRET, approve_all))


@pytest.fixture
def pipeline(network, gateway):
    return PublicationPipeline(PACKAGE_ID, BlobPipeline(network, sleep=no_sleep), gateway)


METADATA = PublishMetadata(title="Episode 1", description="Pilot", content_type="video")


async def publish(pipeline, wallet, resume_from=None, metadata=METADATA):
    return await pipeline.publish(
        b"raw video bytes",
        "0xp1",
        "0xcap",
        metadata,
        owner=wallet.address,
        sign_and_execute=wallet.sign_and_execute,
        resume_from=resume_from,
    )


class TestPublication:
    """Happy paths."""

    @pytest.mark.asyncio
    async def test_publish_encrypted(self, pipeline, network, gateway, wallet):
        outcome = await publish(pipeline, wallet)

        assert outcome.ok
        result = outcome.unwrap()
        assert wallet.targets() == ["register_blob", "certify_blob", "publish_content"]
        assert result.commit_digest == "digest-3"

        stored = await network.read(result.blob_id)
        assert stored != b"raw video bytes"
        key = SessionKey("0xfan", PACKAGE_ID, 0, 10**9, "sig")
        assert await gateway.decrypt(stored, key, "0xpass") == b"raw video bytes"

    @pytest.mark.asyncio
    async def test_publish_content_arguments(self, pipeline, wallet):
        outcome = await publish(pipeline, wallet)

        commit = wallet.transactions[-1].to_dict()
        [call] = commit["calls"]
        assert call["target"] == f"{PACKAGE_ID}::suipatron::publish_content"
        assert call["arguments"][0] == {"object": "0xp1"}
        assert call["arguments"][1] == {"object": "0xcap"}
        assert call["arguments"][4] == {"pure": outcome.state.blob_id, "type": "string"}
        assert call["arguments"][-1] == {"object": "0x6"}

    @pytest.mark.asyncio
    async def test_publish_unencrypted(self, pipeline, network, wallet):
        metadata = PublishMetadata("Free post", "", "text", encrypt=False)

        outcome = await publish(pipeline, wallet, metadata=metadata)

        assert outcome.ok
        assert outcome.state.encrypted is False
        assert await network.read(outcome.state.blob_id) == b"raw video bytes"

    @pytest.mark.asyncio
    async def test_committed_state_is_final(self, pipeline, wallet):
        outcome = await publish(pipeline, wallet)

        again = await publish(pipeline, wallet, resume_from=outcome.state)

        assert again.ok
        assert len(wallet.transactions) == 3


class TestPublicationFailures:
    """Failures return resumable state; nothing is rolled back."""

    @pytest.mark.asyncio
    async def test_register_failure_is_not_partial(self, pipeline, network, wallet):
        network.fail_next("register")

        outcome = await publish(pipeline, wallet)

        assert not outcome.ok
        assert outcome.state.stage is PublishStage.ENCRYPTED
        with pytest.raises(PublicationError) as exc_info:
            outcome.unwrap()
        assert not isinstance(exc_info.value, PartialPipelineFailure)

    @pytest.mark.asyncio
    async def test_upload_failure_resumes_without_reregistering(self, pipeline, network, wallet):
        network.fail_next("upload")

        outcome = await publish(pipeline, wallet)

        assert outcome.state.stage is PublishStage.REGISTERED
        with pytest.raises(PartialPipelineFailure) as exc_info:
            outcome.unwrap()
        state = exc_info.value.state

        resumed = await publish(pipeline, wallet, resume_from=state)

        assert resumed.ok
        assert network.call_counts["register"] == 1
        assert resumed.state.payload == state.payload
        assert wallet.targets() == ["register_blob", "certify_blob", "publish_content"]

    @pytest.mark.asyncio
    async def test_commit_rejected_then_resume_only_commits(self, pipeline, network, wallet):
        wallet.reject_targets.add("publish_content")

        outcome = await publish(pipeline, wallet)

        assert outcome.state.stage is PublishStage.CERTIFIED
        assert isinstance(outcome.error, CommitRejected)
        with pytest.raises(PartialPipelineFailure):
            outcome.unwrap()

        wallet.reject_targets.clear()
        resumed = await publish(pipeline, wallet, resume_from=outcome.state)

        assert resumed.ok
        assert network.call_counts["register"] == 1
        assert network.call_counts["certify"] == 1
        assert wallet.targets()[-2:] == ["publish_content", "publish_content"]

    @pytest.mark.asyncio
    async def test_state_survives_serialization(self, pipeline, network, wallet):
        """A client can persist the failed state and resume in a new process."""
        network.fail_next("certify")
        outcome = await publish(pipeline, wallet)

        restored = PublishState.from_dict(outcome.state.to_dict())
        assert restored == outcome.state

        resumed = await publish(pipeline, wallet, resume_from=restored)
        assert resumed.ok

    @pytest.mark.asyncio
    async def test_blob_id_only_state_commits(self, pipeline, network, wallet):
        blob_id = network.put_blob(b"already stored")

        outcome = await publish(pipeline, wallet, resume_from=PublishState(blob_id=blob_id))

        assert outcome.ok
        assert wallet.targets() == ["publish_content"]
        assert outcome.unwrap().blob_id == blob_id

    @pytest.mark.asyncio
    async def test_committed_state_without_blob_id(self, pipeline, wallet):
        outcome = await publish(pipeline, wallet, resume_from=PublishState(stage=PublishStage.COMMITTED))

        assert wallet.transactions == []
        with pytest.raises(PublicationError, match="blob id"):
            outcome.unwrap()
