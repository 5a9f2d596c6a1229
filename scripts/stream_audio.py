#!/usr/bin/env python3
"""
音频推流脚本 - 通过 WebSocket 把 WAV 文件推送给 meet_translator 并打印返回事件

用法:
    python stream_audio.py <wav 文件> --targets ja zh-Hant-TW fr [--url URL]

示例:
    python stream_audio.py meeting.wav --targets zh-Hant-TW fr
    python stream_audio.py meeting.wav --targets fr --no-voice --url ws://localhost:3001/api/v1/ws
"""

import argparse
import asyncio
import json
import sys
import wave
from pathlib import Path

import websockets

DEFAULT_URL = "ws://localhost:3001/api/v1/ws"
CHUNK_SECONDS = 1.0


async def receive_messages(websocket):
    try:
        async for raw in websocket:
            message = json.loads(raw)
            msg_type = message.get("type")
            if msg_type in ("ping", "pong"):
                continue
            if msg_type == "tts_results":
                sizes = [len(item.get("audio_data", "")) for item in message.get("data", [])]
                print(f"📥 tts_results: {sizes} (base64 长度)")
            else:
                print(f"📥 {msg_type}: {json.dumps(message.get('data') or message, ensure_ascii=False)}")
            if msg_type == "meeting_stopped":
                break
    except websockets.exceptions.ConnectionClosed:
        print("🔌 连接已关闭")


async def stream_file(file_path: Path, url: str, config: dict):
    with wave.open(str(file_path), "rb") as wav:
        frames_per_chunk = int(wav.getframerate() * CHUNK_SECONDS)
        chunks = []
        while True:
            frames = wav.readframes(frames_per_chunk)
            if not frames:
                break
            chunks.append(frames)

    print(f"🔗 连接到 {url}...")
    async with websockets.connect(url) as websocket:
        print(f"✓ {await websocket.recv()}")

        await websocket.send(json.dumps({"type": "start_meeting", "config": config}))
        receiver = asyncio.create_task(receive_messages(websocket))

        print(f"🎤 开始发送音频 ({len(chunks)} 个分片)...")
        for chunk in chunks:
            await websocket.send(chunk)
            await asyncio.sleep(CHUNK_SECONDS)  # 模拟实时推流

        await websocket.send(json.dumps({"type": "stop_meeting"}))
        await receiver


def main():
    parser = argparse.ArgumentParser(description="通过 WebSocket 推送 WAV 音频")
    parser.add_argument("file", help="16-bit PCM WAV 文件")
    parser.add_argument("--url", default=DEFAULT_URL, help=f"WebSocket 地址 (默认: {DEFAULT_URL})")
    parser.add_argument("--meeting-url", default="https://meet.google.com/local-test")
    parser.add_argument("--targets", nargs="+", default=["ja", "zh-Hant-TW", "fr"])
    parser.add_argument("--no-voice", action="store_true", help="关闭语音合成")
    parser.add_argument("--no-subtitles", action="store_true", help="关闭字幕")
    parser.add_argument("--glossary", default=None, help="术语表 ID")

    args = parser.parse_args()

    file_path = Path(args.file)
    if not file_path.is_file():
        print(f"❌ 文件不存在: {file_path}", file=sys.stderr)
        sys.exit(1)

    config = {
        "meeting_url": args.meeting_url,
        "target_languages": args.targets,
        "enable_voice": not args.no_voice,
        "enable_subtitles": not args.no_subtitles,
        "glossary_id": args.glossary,
    }

    try:
        asyncio.run(stream_file(file_path, args.url, config))
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    main()
