"""Tests for RenderSubmitter and credit error parsing."""

import httpx
import pytest

from videoforge.pipeline.errors import InsufficientCreditsError, MissingFootageError, RenderProviderError
from videoforge.pipeline.render import CreditErrorParser, RenderSubmitter
from videoforge.shotstack import ShotstackError


class TestCreditErrorParser:
    def test_extracts_amounts(self):
        shortfall = CreditErrorParser().parse("Insufficient credits: required 2.5, available 1")
        assert shortfall.required == 2.5
        assert shortfall.available == 1

    def test_unparseable_amounts_are_unknown(self):
        shortfall = CreditErrorParser().parse("You are out of credit")
        assert shortfall.required is None
        assert shortfall.available is None
        assert shortfall.describe() == "required unknown, available unknown"

    def test_structured_body_wins(self):
        body = '{"success": false, "message": "Insufficient credits", "response": {"credits": {"required": 3, "available": "0.5"}}}'
        shortfall = CreditErrorParser().parse(body, status_code=402)
        assert shortfall.required == 3
        assert shortfall.available == 0.5

    def test_payment_required_status_counts(self):
        assert CreditErrorParser().parse("Payment Required", status_code=402) is not None

    def test_other_errors_are_not_credit_errors(self):
        assert CreditErrorParser().parse("Invalid timeline: missing src", status_code=400) is None


class TestRenderSubmitter:
    async def test_submits_and_reports_flags(self, mock_shotstack, make_scene, metrics):
        scenes = [make_scene(1, 5), make_scene(2, 7)]
        submission = await RenderSubmitter(mock_shotstack, metrics).submit(
            scenes, audio_url="https://r2.example.com/a.mp3", has_captions=True
        )

        assert submission.render_id == "R1"
        assert submission.duration == 12
        assert submission.has_audio is True
        assert submission.has_captions is True
        body = mock_shotstack.submit.await_args.args[0]
        assert body["timeline"]["soundtrack"]["src"] == "https://r2.example.com/a.mp3"
        assert metrics.counter("stage.render.submitted") == 1

    async def test_missing_footage_makes_no_calls(self, mock_shotstack, make_scene):
        scenes = [make_scene(1), make_scene(2, footage=False)]
        with pytest.raises(MissingFootageError, match="scene2"):
            await RenderSubmitter(mock_shotstack).submit(scenes)

        mock_shotstack.get_me.assert_not_awaited()
        mock_shotstack.submit.assert_not_awaited()

    async def test_empty_scene_list_rejected(self, mock_shotstack):
        with pytest.raises(MissingFootageError):
            await RenderSubmitter(mock_shotstack).submit([])

    async def test_credit_preflight_blocks_submission(self, mock_shotstack, make_scene):
        mock_shotstack.get_me.return_value = {"credits": 0.001}
        scenes = [make_scene(i, 10) for i in range(1, 7)]

        with pytest.raises(InsufficientCreditsError) as exc_info:
            await RenderSubmitter(mock_shotstack).submit(scenes)

        assert exc_info.value.shortfall.required == 0.1
        assert exc_info.value.shortfall.available == 0.001
        mock_shotstack.submit.assert_not_awaited()

    async def test_unavailable_account_endpoint_still_submits(self, mock_shotstack, make_scene):
        mock_shotstack.get_me.side_effect = ShotstackError("Shotstack API error 503", status_code=503)
        submission = await RenderSubmitter(mock_shotstack).submit([make_scene(1)])

        assert submission.render_id == "R1"
        mock_shotstack.submit.assert_awaited_once()

    async def test_provider_credit_error_is_typed(self, mock_shotstack, make_scene):
        mock_shotstack.submit.side_effect = ShotstackError(
            "Shotstack API error 402", status_code=402, body="Not enough credits remaining"
        )
        with pytest.raises(InsufficientCreditsError) as exc_info:
            await RenderSubmitter(mock_shotstack).submit([make_scene(1)])
        assert exc_info.value.provider == "shotstack"

    async def test_other_provider_errors_are_wrapped(self, mock_shotstack, make_scene, metrics):
        mock_shotstack.submit.side_effect = ShotstackError("Shotstack API error 400", status_code=400, body="bad src")
        with pytest.raises(RenderProviderError) as exc_info:
            await RenderSubmitter(mock_shotstack, metrics).submit([make_scene(1)], project_id="p1")

        assert exc_info.value.status_code == 400
        assert metrics.counter("errors.shotstack") == 1

    async def test_network_error_is_wrapped(self, mock_shotstack, make_scene):
        mock_shotstack.submit.side_effect = httpx.ReadTimeout("timed out")
        with pytest.raises(RenderProviderError):
            await RenderSubmitter(mock_shotstack).submit([make_scene(1)])
