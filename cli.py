import argparse
import logging

from data_agent.agent import DataAgent
from data_agent.config import load_config
from data_agent.db import create_data_engine
from data_agent.errors import DataAgentError
from data_agent.importer import import_app_uv
from data_agent.llm_openai import load_llm


def make_agent(cfg) -> DataAgent:
    llm = load_llm(
        provider=cfg.get("provider", "openai"),
        model=cfg.get("model"),
        temperature=cfg.get("temperature", 0.1),
        top_p=cfg.get("top_p"),
        max_tokens=cfg.get("max_tokens"),
        timeout=cfg.get("timeout", 120.0),
        api_base=cfg.get("api_base"),
    )
    engine = create_data_engine(cfg["database_url"])
    return DataAgent(client=llm, engine=engine, output_dir=cfg.get("output_dir", "public"))


def cmd_chat_once(agent: DataAgent, content: str):
    try:
        reply = agent.run_agent(content)
    except DataAgentError as e:
        print(f"[ERROR] {e}")
        return 1
    print(reply)
    return 0


def cmd_chat_loop(agent: DataAgent):
    print("==== Data Agent ====")
    print("输入你的问题（'exit' 退出）：")
    while True:
        try:
            user = input("\n❓ 问题: ").strip()
        except (EOFError, KeyboardInterrupt):
            print("\n再见！")
            break
        if user.lower() in {"exit", "quit"}:
            print("再见！")
            break
        if not user:
            continue
        try:
            reply = agent.run_agent(user)
        except DataAgentError as e:
            print(f"[ERROR] {e}")
            continue
        print("\n—— 回答 ——")
        print(reply)


def cmd_initdb(cfg, csv_path: str, strict: bool):
    engine = create_data_engine(cfg["database_url"])
    n = import_app_uv(engine, csv_path, strict=strict)
    print(f"[OK] 写入 app_uv 共 {n} 条")


def main(argv=None):
    parser = argparse.ArgumentParser(description="Data Agent (tool-calling)")
    parser.add_argument("--config", type=str, help="配置文件路径（默认项目根目录 config.yaml）")
    # 子命令后面也接受 --config；SUPPRESS 保证没写时不覆盖前面的值
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument("--config", type=str, default=argparse.SUPPRESS, help="配置文件路径")
    sub = parser.add_subparsers(dest="cmd")

    p_chat = sub.add_parser("chat", parents=[common], help="与 Agent 对话")
    p_chat.add_argument("-c", "--content", type=str, help="单轮提问内容")

    p_init = sub.add_parser("initdb", parents=[common], help="把 app_uv CSV 导入数据库")
    p_init.add_argument("--csv", required=True, help="CSV 路径（date,uv 两列）")
    p_init.add_argument("--strict", action="store_true", help="遇到非法行直接失败，而不是跳过")

    args = parser.parse_args(argv)
    cfg = load_config(args.config)
    logging.basicConfig(
        level=cfg.get("log_level", "INFO"),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if args.cmd == "chat":
        agent = make_agent(cfg)
        if args.content:
            return cmd_chat_once(agent, args.content)
        else:
            cmd_chat_loop(agent)
    elif args.cmd == "initdb":
        cmd_initdb(cfg, args.csv, args.strict)
    else:
        parser.print_help()


if __name__ == "__main__":
    raise SystemExit(main())
