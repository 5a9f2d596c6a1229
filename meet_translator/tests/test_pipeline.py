import asyncio
import os
import sys
import unittest

sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

from fakes import (  # noqa: E402
    FR,
    JA,
    ZH,
    FakeSynthesizer,
    FakeTranscriber,
    FakeTranslator,
    recognition,
)
from meet_translator.app.core.errors import (  # noqa: E402
    ConfigurationError,
    InvalidInputError,
    ReconnectExhaustedError,
)
from meet_translator.app.schemas.pipeline import AudioChunk, SessionConfig  # noqa: E402
from meet_translator.app.services.pipeline import PipelineEvent, SessionPipeline  # noqa: E402

STAGE_EVENTS = [
    PipelineEvent.PARTIAL_RECOGNITION,
    PipelineEvent.FINAL_RECOGNITION,
    PipelineEvent.TRANSLATIONS,
    PipelineEvent.SYNTHESIZED_AUDIO,
    PipelineEvent.SUBTITLES,
    PipelineEvent.ERROR,
]


def make_config(targets=(JA, ZH, FR), voice=True, subtitles=True, glossary_id=None):
    return SessionConfig(
        meeting_url="https://meet.google.com/abc-defg-hij",
        target_languages=list(targets),
        enable_voice=voice,
        enable_subtitles=subtitles,
        glossary_id=glossary_id,
    )


def chunk(speaker_id=None):
    return AudioChunk(data=b"\x00\x01" * 160, timestamp=1700000000000, speaker_id=speaker_id)


class PipelineTestCase(unittest.IsolatedAsyncioTestCase):
    def setUp(self):
        self.transcriber = FakeTranscriber()
        self.translator = FakeTranslator()
        self.synthesizer = FakeSynthesizer()
        self.pipeline = SessionPipeline(self.transcriber, self.translator, self.synthesizer)
        self.events = []
        for event in STAGE_EVENTS:
            self.pipeline.on(event, lambda payload, event=event: self.events.append((event, payload)))

    def event_names(self):
        return [event for event, _ in self.events]

    def payload(self, event):
        return [payload for name, payload in self.events if name == event]


class TestLifecycle(PipelineTestCase):
    async def test_inactive_pipeline_ignores_chunks(self):
        await self.pipeline.process_chunk(chunk())

        self.assertEqual(self.events, [])
        self.assertEqual(self.transcriber.chunks, [])
        self.assertEqual(self.translator.calls, [])
        self.assertEqual(self.synthesizer.calls, [])

    async def test_stopped_pipeline_ignores_chunks(self):
        await self.pipeline.start(make_config())
        await self.pipeline.stop()
        await self.pipeline.process_chunk(chunk())

        self.assertEqual(self.events, [])
        self.assertEqual(self.transcriber.chunks, [])

    async def test_start_and_stop_emit_lifecycle_events(self):
        lifecycle = []
        self.pipeline.on(PipelineEvent.STARTED, lambda: lifecycle.append("started"))
        self.pipeline.on(PipelineEvent.STOPPED, lambda stats: lifecycle.append("stopped"))

        await self.pipeline.start(make_config())
        self.assertTrue(self.pipeline.get_state().is_active)
        await self.pipeline.stop()
        self.assertFalse(self.pipeline.get_state().is_active)
        self.assertEqual(lifecycle, ["started", "stopped"])

    async def test_stop_twice(self):
        await self.pipeline.start(make_config())
        await self.pipeline.process_chunk(chunk())

        first = await self.pipeline.stop()
        second = await self.pipeline.stop()

        self.assertEqual(first["total"]["count"], 1)
        self.assertEqual(second["total"]["count"], 0)
        self.assertEqual(second["recognition"]["median"], 0)

    async def test_start_accepts_dict_and_rejects_malformed(self):
        await self.pipeline.start(
            {"meeting_url": "https://meet.google.com/x", "target_languages": ["fr"]}
        )
        self.assertEqual(self.pipeline.config.target_languages, (FR,))

        with self.assertRaises(InvalidInputError):
            await SessionPipeline(self.transcriber, self.translator).start(
                {"meeting_url": "https://meet.google.com/x"}
            )
        with self.assertRaises(InvalidInputError):
            await SessionPipeline(self.transcriber, self.translator).start(None)

    async def test_voice_requires_synthesizer(self):
        pipeline = SessionPipeline(self.transcriber, self.translator)
        with self.assertRaises(ConfigurationError):
            await pipeline.start(make_config(voice=True))
        self.assertFalse(pipeline.get_state().is_active)

    async def test_get_state_returns_snapshot(self):
        await self.pipeline.start(make_config())
        before = self.pipeline.get_state()

        await self.pipeline.process_chunk(chunk(speaker_id="alice"))
        after = self.pipeline.get_state()

        self.assertIsNone(before.current_speaker)
        self.assertEqual(before.latency.total, 0)
        self.assertEqual(after.current_speaker, "alice")
        self.assertIsNot(after, self.pipeline.get_state())


class TestProcessChunk(PipelineTestCase):
    async def test_fan_out_skips_source_language(self):
        self.transcriber.results = [recognition(text="こんにちは", language=JA)]
        await self.pipeline.start(make_config(targets=(JA, ZH, FR)))

        await self.pipeline.process_chunk(chunk())

        self.assertEqual(
            self.event_names(),
            [
                PipelineEvent.FINAL_RECOGNITION,
                PipelineEvent.TRANSLATIONS,
                PipelineEvent.SYNTHESIZED_AUDIO,
                PipelineEvent.SUBTITLES,
            ],
        )
        translations = self.payload(PipelineEvent.TRANSLATIONS)[0]
        self.assertEqual([t.target_lang for t in translations], [ZH, FR])
        self.assertTrue(all(t.original_text == "こんにちは" for t in translations))
        self.assertTrue(all(t.source_lang == JA for t in translations))

        audio = self.payload(PipelineEvent.SYNTHESIZED_AUDIO)[0]
        self.assertEqual([a.language for a in audio], [ZH, FR])
        self.assertEqual(self.payload(PipelineEvent.SUBTITLES)[0], translations)

    async def test_translation_count_matches_non_source_targets(self):
        cases = [
            ((JA, ZH, FR), JA, [ZH, FR]),
            ((FR, JA), JA, [FR]),
            ((ZH, FR), JA, [ZH, FR]),
            ((FR,), FR, []),
        ]
        for targets, source, expected in cases:
            self.events.clear()
            self.transcriber.results = [recognition(language=source, confidence=0.8)]
            await self.pipeline.start(make_config(targets=targets))
            await self.pipeline.process_chunk(chunk())

            translations = self.payload(PipelineEvent.TRANSLATIONS)[0]
            self.assertEqual([t.target_lang for t in translations], expected)

    async def test_results_reordered_to_config_order(self):
        self.pipeline.translator = FakeTranslator(reverse=True)
        await self.pipeline.start(make_config(targets=(FR, ZH)))

        await self.pipeline.process_chunk(chunk())

        translations = self.payload(PipelineEvent.TRANSLATIONS)[0]
        self.assertEqual([t.target_lang for t in translations], [FR, ZH])

    async def test_glossary_passed_to_translator(self):
        await self.pipeline.start(make_config(glossary_id="product-terms"))
        await self.pipeline.process_chunk(chunk())

        self.assertEqual(self.translator.calls[0][3], "product-terms")

    async def test_partial_result_is_not_translated(self):
        self.transcriber.results = [recognition(text="こん", is_final=False)]
        await self.pipeline.start(make_config())

        await self.pipeline.process_chunk(chunk())

        self.assertEqual(self.event_names(), [PipelineEvent.PARTIAL_RECOGNITION])
        self.assertFalse(self.payload(PipelineEvent.PARTIAL_RECOGNITION)[0].is_final)
        self.assertEqual(self.translator.calls, [])
        self.assertEqual(self.synthesizer.calls, [])

    async def test_voice_disabled_subtitles_enabled(self):
        await self.pipeline.start(make_config(voice=False, subtitles=True))

        await self.pipeline.process_chunk(chunk())

        self.assertNotIn(PipelineEvent.SYNTHESIZED_AUDIO, self.event_names())
        self.assertEqual(self.synthesizer.calls, [])
        subtitles = self.payload(PipelineEvent.SUBTITLES)[0]
        self.assertEqual(subtitles, self.payload(PipelineEvent.TRANSLATIONS)[0])
        self.assertEqual(len(subtitles), 2)
        self.assertEqual(self.pipeline.get_state().latency.synthesis, 0)

    async def test_subtitles_disabled(self):
        await self.pipeline.start(make_config(voice=True, subtitles=False))
        await self.pipeline.process_chunk(chunk())

        self.assertNotIn(PipelineEvent.SUBTITLES, self.event_names())
        self.assertIn(PipelineEvent.SYNTHESIZED_AUDIO, self.event_names())

    async def test_one_failing_language_suppresses_translations(self):
        self.pipeline.translator = FakeTranslator(failing={FR})
        await self.pipeline.start(make_config(targets=(JA, ZH, FR)))

        await self.pipeline.process_chunk(chunk())

        self.assertEqual(
            self.event_names(), [PipelineEvent.FINAL_RECOGNITION, PipelineEvent.ERROR]
        )
        self.assertIn("fr", self.payload(PipelineEvent.ERROR)[0])
        self.assertEqual(self.synthesizer.calls, [])

    async def test_synthesis_failure_emits_error(self):
        self.pipeline.synthesizer = FakeSynthesizer(fail=True)
        await self.pipeline.start(make_config())

        await self.pipeline.process_chunk(chunk())

        self.assertEqual(
            self.event_names(),
            [PipelineEvent.FINAL_RECOGNITION, PipelineEvent.TRANSLATIONS, PipelineEvent.ERROR],
        )
        self.assertEqual(self.payload(PipelineEvent.ERROR)[0], "synthesis failed")

    async def test_recovers_after_failed_chunk(self):
        self.transcriber.results = [
            ReconnectExhaustedError(5),
            recognition(text="次の発言です"),
        ]
        await self.pipeline.start(make_config())

        await self.pipeline.process_chunk(chunk())
        await self.pipeline.process_chunk(chunk())

        self.assertEqual(self.event_names()[0], PipelineEvent.ERROR)
        self.assertIn("exhausted", self.payload(PipelineEvent.ERROR)[0])
        self.assertEqual(
            self.payload(PipelineEvent.FINAL_RECOGNITION)[0].text, "次の発言です"
        )
        self.assertEqual(len(self.payload(PipelineEvent.TRANSLATIONS)), 1)

    async def test_latency_snapshot(self):
        await self.pipeline.start(make_config())
        await self.pipeline.process_chunk(chunk())

        latency = self.pipeline.get_state().latency
        for value in (latency.recognition, latency.translation, latency.synthesis, latency.total):
            self.assertGreaterEqual(value, 0)
        self.assertGreaterEqual(
            latency.total, latency.recognition + latency.translation + latency.synthesis
        )
        stats = self.pipeline.metrics.get_stats()
        self.assertEqual(stats["synthesis"]["count"], 1)
        self.assertEqual(stats["total"]["count"], 1)

    async def test_chunks_processed_one_at_a_time(self):
        self.transcriber.gate = asyncio.Event()
        self.transcriber.results = [recognition(text="一"), recognition(text="二")]
        await self.pipeline.start(make_config())

        first = asyncio.create_task(self.pipeline.process_chunk(chunk()))
        second = asyncio.create_task(self.pipeline.process_chunk(chunk()))
        await asyncio.sleep(0.01)

        self.assertEqual(len(self.transcriber.chunks), 1)
        self.transcriber.gate.set()
        await asyncio.gather(first, second)

        self.assertEqual(self.transcriber.max_in_flight, 1)
        finals = [r.text for r in self.payload(PipelineEvent.FINAL_RECOGNITION)]
        self.assertEqual(finals, ["一", "二"])

    async def test_no_events_after_stop_for_in_flight_chunk(self):
        self.transcriber.gate = asyncio.Event()
        await self.pipeline.start(make_config())

        task = asyncio.create_task(self.pipeline.process_chunk(chunk()))
        await asyncio.sleep(0.01)
        await self.pipeline.stop()
        self.transcriber.gate.set()
        await task

        self.assertEqual(self.events, [])

    async def test_stop_during_translation_suppresses_later_events(self):
        self.translator.gate = asyncio.Event()
        await self.pipeline.start(make_config())

        task = asyncio.create_task(self.pipeline.process_chunk(chunk()))
        await asyncio.sleep(0.01)
        stats = await self.pipeline.stop()
        self.translator.gate.set()
        await task

        self.assertEqual(self.event_names(), [PipelineEvent.FINAL_RECOGNITION])
        self.assertEqual(stats["total"]["count"], 0)
        self.assertEqual(self.pipeline.metrics.get_stats()["total"]["count"], 0)
        self.assertEqual(self.pipeline.metrics.get_stats()["recognition"]["count"], 0)

    async def test_stop_during_synthesis_suppresses_later_events(self):
        self.synthesizer.gate = asyncio.Event()
        await self.pipeline.start(make_config())

        task = asyncio.create_task(self.pipeline.process_chunk(chunk()))
        await asyncio.sleep(0.01)
        self.assertEqual(len(self.synthesizer.calls), 1)
        await self.pipeline.stop()
        self.synthesizer.gate.set()
        await task

        self.assertEqual(
            self.event_names(),
            [PipelineEvent.FINAL_RECOGNITION, PipelineEvent.TRANSLATIONS],
        )
        self.assertEqual(self.pipeline.metrics.get_stats()["total"]["count"], 0)

        # 重新开始的会话只统计自己的分片
        self.synthesizer.gate = None
        await self.pipeline.start(make_config())
        await self.pipeline.process_chunk(chunk())
        stats = await self.pipeline.stop()
        self.assertEqual(stats["total"]["count"], 1)
        self.assertEqual(stats["synthesis"]["count"], 1)

    async def test_listener_failure_does_not_break_pipeline(self):
        def broken(payload):
            raise RuntimeError("client gone")

        self.pipeline.on(PipelineEvent.FINAL_RECOGNITION, broken)
        await self.pipeline.start(make_config())

        await self.pipeline.process_chunk(chunk())

        self.assertIn(PipelineEvent.TRANSLATIONS, self.event_names())
        self.assertNotIn(PipelineEvent.ERROR, self.event_names())

    async def test_report_error(self):
        await self.pipeline.start(make_config())
        await self.pipeline.report_error("STT reconnect attempts exhausted")

        self.assertEqual(
            self.events, [(PipelineEvent.ERROR, "STT reconnect attempts exhausted")]
        )


if __name__ == "__main__":
    unittest.main()
