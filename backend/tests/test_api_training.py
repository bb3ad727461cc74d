"""Integration tests for training job, metric and log endpoints."""

import json
import os
import time


def _create_job(client, name="Walk", total_epochs=5, user_id=1, reward_config=None, files=None, **extra):
    data = {"name": name, "userId": str(user_id), "totalEpochs": str(total_epochs)}
    if reward_config is not None:
        data["rewardConfig"] = json.dumps(reward_config)
    data.update(extra)
    return client.post("/api/training-jobs", data=data, files=files)


def _wait_for_status(client, job_id, status, timeout=10.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        job = client.get(f"/api/training-jobs/{job_id}").json()
        if job["status"] == status:
            return job
        time.sleep(0.02)
    raise AssertionError(f"job {job_id} never reached {status}")


class TestCreateTrainingJob:
    """POST /api/training-jobs"""

    def test_create_returns_queued_job(self, client, app):
        response = _create_job(client, total_epochs=200)

        assert response.status_code == 200
        job = response.json()
        assert job["status"] == "queued"
        assert job["progress"] == 0
        assert job["currentEpoch"] == 0
        assert job["totalEpochs"] == 200
        assert job["startedAt"] is None
        assert job["completedAt"] is None
        assert app.state.runner.is_running(job["id"])

    def test_reward_config_round_trip(self, client, sample_reward_config):
        job = _create_job(client, reward_config=sample_reward_config).json()

        fetched = client.get(f"/api/training-jobs/{job['id']}").json()

        assert fetched["rewardConfig"] == sample_reward_config
        assert list(fetched["rewardConfig"]) == ["position", "velocity", "energy"]

    def test_empty_reward_config_is_null(self, client):
        job = _create_job(client, rewardConfig="{}").json()

        assert job["rewardConfig"] is None

    def test_uploaded_files_are_referenced(self, client, upload_dir):
        files = {
            "modelFile": ("humanoid.xml", b"<mujoco/>", "application/xml"),
            "rewardFile": ("reward.py", b"def reward(): return 1", "text/x-python"),
        }

        job = _create_job(client, files=files).json()

        assert job["modelFile"].startswith(upload_dir)
        assert job["rewardFile"].endswith("_reward.py")
        with open(job["rewardFile"], "rb") as f:
            assert f.read() == b"def reward(): return 1"

    def test_malformed_reward_config_rejected(self, client):
        response = _create_job(client, rewardConfig="not json")

        assert response.status_code == 400
        assert response.json() == {"detail": "Invalid training job data"}

    def test_incomplete_reward_config_rejected(self, client):
        response = _create_job(client, reward_config={"position": 1.0})

        assert response.status_code == 400

    def test_non_positive_epochs_rejected(self, client):
        assert _create_job(client, total_epochs=0).status_code == 400
        assert _create_job(client, total_epochs=-3).status_code == 400

    def test_unknown_owner_rejected(self, client):
        response = _create_job(client, user_id=42)

        assert response.status_code == 400
        assert response.json() == {"detail": "Invalid training job data"}
        assert client.get("/api/training-jobs").json() == []

    def test_unknown_model_rejected(self, client, storage):
        model = storage.create_model(name="Walker", user_id=1, model_type="humanoid")

        assert _create_job(client, modelId="99").status_code == 400
        assert _create_job(client, modelId=str(model.id)).json()["modelId"] == model.id

    def test_oversize_reward_file_discards_model_file(self, client, upload_dir):
        files = {
            "modelFile": ("m.pt", b"x" * 10, "application/octet-stream"),
            "rewardFile": ("reward.py", b"x" * 5000, "text/x-python"),
        }

        response = _create_job(client, files=files)

        assert response.status_code == 400
        assert client.get("/api/training-jobs").json() == []
        assert os.listdir(upload_dir) == []

    def test_missing_name_rejected(self, client):
        response = client.post("/api/training-jobs", data={"userId": "1", "totalEpochs": "5"})

        assert response.status_code == 400
        assert client.get("/api/training-jobs").json() == []


class TestListTrainingJobs:
    """GET /api/training-jobs"""

    def test_filter_by_user(self, client, make_user):
        other = make_user("jane")
        _create_job(client, name="mine", user_id=1)
        _create_job(client, name="theirs", user_id=other.id)

        mine = client.get("/api/training-jobs", params={"userId": 1}).json()
        everything = client.get("/api/training-jobs").json()

        assert [job["name"] for job in mine] == ["mine"]
        assert [job["name"] for job in everything] == ["mine", "theirs"]

    def test_get_unknown_job(self, client):
        assert client.get("/api/training-jobs/99").status_code == 404


class TestUpdateTrainingJob:
    """PATCH /api/training-jobs/:id"""

    def test_patch_unknown_job(self, client):
        assert client.patch("/api/training-jobs/99", json={"name": "x"}).status_code == 404

    def test_patch_name(self, client):
        job = _create_job(client).json()

        updated = client.patch(f"/api/training-jobs/{job['id']}", json={"name": "Run"}).json()

        assert updated["name"] == "Run"
        assert updated["status"] == "queued"

    def test_patch_to_terminal_stops_simulation(self, client, app):
        job = _create_job(client).json()

        updated = client.patch(f"/api/training-jobs/{job['id']}", json={"status": "completed"}).json()

        assert updated["status"] == "completed"
        assert updated["completedAt"] is not None
        assert not app.state.runner.is_running(job["id"])

    def test_terminal_status_is_sticky(self, client):
        job = _create_job(client).json()
        client.patch(f"/api/training-jobs/{job['id']}", json={"status": "failed"})

        response = client.patch(f"/api/training-jobs/{job['id']}", json={"status": "running"})

        assert response.status_code == 400
        assert client.get(f"/api/training-jobs/{job['id']}").json()["status"] == "failed"

    def test_epoch_beyond_total_rejected(self, client):
        job = _create_job(client, total_epochs=5).json()

        response = client.patch(f"/api/training-jobs/{job['id']}", json={"currentEpoch": 6})

        assert response.status_code == 400

    def test_progress_cannot_be_patched(self, client):
        job = _create_job(client, total_epochs=4).json()

        response = client.patch(f"/api/training-jobs/{job['id']}", json={"progress": 77})

        assert response.status_code == 400
        assert client.get(f"/api/training-jobs/{job['id']}").json()["progress"] == 0

    def test_epoch_of_running_job_is_owned_by_simulation(self, client, app):
        job = _create_job(client, total_epochs=4).json()
        assert app.state.runner.is_running(job["id"])

        response = client.patch(f"/api/training-jobs/{job['id']}", json={"currentEpoch": 3})

        assert response.status_code == 400
        fetched = client.get(f"/api/training-jobs/{job['id']}").json()
        assert fetched["currentEpoch"] == 0
        assert fetched["progress"] == 0

    def test_epoch_patch_derives_progress(self, client, storage):
        # Created through the store, so no simulation is attached
        job = storage.create_training_job(name="Idle", user_id=1, total_epochs=4)

        response = client.patch(f"/api/training-jobs/{job.id}", json={"currentEpoch": 3})

        assert response.status_code == 200
        assert response.json()["currentEpoch"] == 3
        assert response.json()["progress"] == 75

    def test_epoch_of_finished_job_is_frozen(self, client):
        job = _create_job(client, total_epochs=4).json()
        client.post(f"/api/training-jobs/{job['id']}/stop")

        response = client.patch(f"/api/training-jobs/{job['id']}", json={"currentEpoch": 2})

        assert response.status_code == 400

    def test_unknown_status_rejected(self, client):
        job = _create_job(client).json()

        response = client.patch(f"/api/training-jobs/{job['id']}", json={"status": "paused"})

        assert response.status_code == 400


class TestStopTrainingJob:
    """POST /api/training-jobs/:id/stop"""

    def test_stop_cancels_and_marks_failed(self, client, app):
        job = _create_job(client).json()

        response = client.post(f"/api/training-jobs/{job['id']}/stop")

        assert response.status_code == 200
        stopped = response.json()
        assert stopped["status"] == "failed"
        assert stopped["errorLog"] == "Stopped by user"
        assert stopped["completedAt"] is not None
        assert not app.state.runner.is_running(job["id"])

        logs = client.get(f"/api/training-logs/{job['id']}").json()
        assert logs[-1]["level"] == "WARN"
        assert logs[-1]["message"] == "Training stopped by user at epoch 0"

    def test_stop_is_idempotent(self, client):
        job = _create_job(client).json()
        client.post(f"/api/training-jobs/{job['id']}/stop")

        again = client.post(f"/api/training-jobs/{job['id']}/stop")

        assert again.status_code == 200
        assert again.json()["status"] == "failed"
        assert len(client.get(f"/api/training-logs/{job['id']}").json()) == 1

    def test_stop_unknown_job(self, client):
        assert client.post("/api/training-jobs/99/stop").status_code == 404


class TestDeleteTrainingJob:
    """DELETE /api/training-jobs/:id"""

    def test_delete_removes_history(self, client, app):
        job = _create_job(client).json()

        assert client.delete(f"/api/training-jobs/{job['id']}").status_code == 200
        assert client.get(f"/api/training-jobs/{job['id']}").status_code == 404
        assert client.get(f"/api/training-metrics/{job['id']}").json() == []
        assert not app.state.runner.is_running(job["id"])
        assert client.delete(f"/api/training-jobs/{job['id']}").status_code == 404


class TestSimulatedTraining:
    """End-to-end runs with a fast tick."""

    def test_five_epoch_run(self, fast_client):
        job = _create_job(fast_client, total_epochs=5).json()

        done = _wait_for_status(fast_client, job["id"], "completed")

        assert done["progress"] == 100
        assert done["currentEpoch"] == 5
        assert done["startedAt"] is not None
        assert done["completedAt"] is not None

        metrics = fast_client.get(f"/api/training-metrics/{job['id']}").json()
        assert [sample["epoch"] for sample in metrics] == [1, 2, 3, 4, 5]
        assert all(sample["jobId"] == job["id"] for sample in metrics)

        logs = fast_client.get(f"/api/training-logs/{job['id']}").json()
        assert len(logs) == 6
        assert logs[0]["message"].startswith("Epoch 1/5")
        assert logs[-1]["message"] == "Training completed after 5 epochs"

    def test_metrics_for_unknown_job_are_empty(self, client):
        assert client.get("/api/training-metrics/404").json() == []
        assert client.get("/api/training-logs/404").json() == []


def test_root(client):
    assert client.get("/").json() == {"status": "ok"}


def test_upload_dir_created_lazily(client, upload_dir):
    _create_job(client, files={"modelFile": ("m.xml", b"<m/>", "application/xml")})

    assert os.path.isdir(upload_dir)
